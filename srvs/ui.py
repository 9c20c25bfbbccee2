import logging
import random
import secrets
import sqlite3
import time
from datetime import datetime

from flask import Flask, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import commitment, config, db, http_client, scheduler
from .errors import (ConfigurationError, QueryParseError, SRVSError, SyncError,
                     UnknownWorkspaceError)
from .metrics import registry

logger = logging.getLogger(__name__)

app = Flask(__name__)

ERROR_STATUS = (
    (UnknownWorkspaceError, 404),
    (ConfigurationError, 400),
    (QueryParseError, 400),
    (SyncError, 502),
)

RELAY_ATTRIBUTES = ['age', 'income', 'location', 'occupation', 'education']


@app.errorhandler(SRVSError)
def handle_srvs_error(e):
    status = 500
    for cls, code in ERROR_STATUS:
        if isinstance(e, cls):
            status = code
            break
    return jsonify(e.to_dict()), status


def _registry():
    return scheduler.get_registry()


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _bearer():
    auth = request.headers.get('Authorization') or ''
    parts = auth.split(' ', 1)
    if len(parts) == 2 and parts[1].strip():
        return parts[1].strip()
    return None


def _workspace_view(workspace: str) -> dict:
    ws = db.get_workspace(workspace)
    out = _registry().status(workspace)
    # the api key itself is never echoed back
    out['hasCredentials'] = bool(ws.get('api_key') and ws.get('base_url'))
    out['baseUrl'] = ws.get('base_url')
    out['userId'] = ws.get('user_id')
    out['respondentCount'] = db.count_respondents(workspace)
    return out


@app.route('/api/health')
def health():
    try:
        conn = db.get_conn()
        conn.execute('SELECT 1').fetchone()
        conn.close()
    except sqlite3.Error:
        logger.exception('Health check could not reach the database')
        return jsonify({'status': 'error', 'database': 'unavailable'}), 500
    reg = _registry()
    return jsonify({
        'status': 'ok',
        'database': 'ok',
        'useMockApi': config.use_mock_api(),
        'workspaces': {ws: reg.status(ws)['enabled'] for ws in scheduler.WORKSPACES},
    })


@app.route('/api/workspaces/<workspace>/status')
def workspace_status(workspace):
    scheduler.check_workspace(workspace)
    return jsonify(_workspace_view(workspace))


@app.route('/api/workspaces/<workspace>/credentials', methods=['PUT'])
def workspace_credentials(workspace):
    scheduler.check_workspace(workspace)
    data = _json_body()
    api_key = (data.get('apiKey') or '').strip() or None
    base_url = (data.get('baseUrl') or '').strip() or None
    user_id = (data.get('userId') or '').strip() or None
    db.set_credentials(workspace, api_key, base_url.rstrip('/') if base_url else None, user_id)
    logger.info('Credentials updated for %s', workspace)
    return jsonify(_workspace_view(workspace))


@app.route('/api/workspaces/<workspace>/auto-sync', methods=['POST'])
def workspace_auto_sync(workspace):
    scheduler.check_workspace(workspace)
    enabled = _json_body().get('enabled')
    if not isinstance(enabled, bool):
        return jsonify({'error': 'enabled must be true or false'}), 400
    on = _registry().set_enabled(workspace, enabled)
    if enabled and not on:
        reason = _registry().status(workspace)['lastError'] or 'credentials missing'
        raise ConfigurationError(reason, {'workspace': workspace})
    return jsonify(_workspace_view(workspace))


@app.route('/api/workspaces/<workspace>/sync', methods=['POST'])
def workspace_sync(workspace):
    scheduler.check_workspace(workspace)
    reg = _registry()
    reg.get(workspace).credentials()
    result = reg.trigger_sync(workspace)
    body = result.to_dict()
    body['status'] = reg.status(workspace)
    if result.success:
        return jsonify(body)
    if result.skipped or result.discarded:
        return jsonify(body), 409
    return jsonify(body), 502


@app.route('/api/workspaces/<workspace>/respondents')
def workspace_respondents(workspace):
    scheduler.check_workspace(workspace)
    rows = db.list_respondents(workspace)
    proof = request.args.get('proofStatus')
    if proof:
        rows = [r for r in rows if r['proofStatus'] == proof]
    return jsonify({'workspace': workspace, 'count': len(rows), 'respondents': rows})


@app.route('/api/workspaces/<workspace>/respondents/email-sent', methods=['POST'])
def workspace_email_sent(workspace):
    scheduler.check_workspace(workspace)
    ids = _json_body().get('respondentIds')
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'respondentIds must be a non-empty list'}), 400
    n = db.mark_email_sent(workspace, [str(i) for i in ids])
    return jsonify({'success': True, 'updated': n})


@app.route('/api/workspaces/<workspace>/respondents/<respondent_id>/verification', methods=['POST'])
def workspace_verification(workspace, respondent_id):
    scheduler.check_workspace(workspace)
    data = _json_body()
    proof = data.get('proofStatus')
    result = data.get('queryResult')
    if isinstance(result, str):
        result = result.lower()
    try:
        ok = db.record_verification(workspace, respondent_id, proof, result)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if not ok:
        return jsonify({'error': 'Respondent not found'}), 404
    return jsonify({'success': True, 'respondent': db.get_respondent(workspace, respondent_id)})


@app.route('/api/workspaces/<workspace>/proof/request', methods=['POST'])
def workspace_proof_request(workspace):
    scheduler.check_workspace(workspace)
    ids = _json_body().get('respondentIds')
    if not isinstance(ids, list) or not ids:
        return jsonify({'error': 'respondentIds must be a non-empty list'}), 400
    creds = _registry().get(workspace).credentials()
    data = http_client.request_proofs(creds['base_url'], creds['api_key'], ids)
    return jsonify(data)


def local_sync_response(timestamp: str) -> dict:
    """Respondents made up on the spot when no mock panel API is in use."""
    respondents = []
    for _ in range(random.randint(5, 14)):
        rid = f'RSP-{int(time.time() * 1000)}-{secrets.token_hex(5)}'
        salt = commitment.generate_salt()
        attrs = random.sample(RELAY_ATTRIBUTES, random.randint(1, 3))
        respondents.append({
            'id': rid,
            'hashedData': commitment.commit_record({'respondentId': rid, 'timestamp': timestamp}, salt),
            'proofStatus': 'pending',
            'attributesRequiringProof': attrs,
            'syncedAt': timestamp,
            'attributeHashes': {a: commitment.commit_attribute(a, None, salt) for a in ('age', 'income', 'location')},
        })
    return {
        'success': True,
        'syncedAt': timestamp,
        'zkpCompliant': True,
        'dataPoints': {'respondentsAdded': len(respondents), 'respondentsUpdated': 0, 'failedRecords': 0},
        'respondents': respondents,
        'message': 'Data synchronized successfully (IDs and commitments only)',
    }


@app.route('/api/sync', methods=['POST'])
def relay_sync():
    api_key = _bearer()
    if not api_key:
        return jsonify({'error': 'API key required'}), 401
    data = _json_body()
    user_id = data.get('userId')
    if not user_id:
        return jsonify({'error': 'User ID required'}), 400
    timestamp = data.get('timestamp') or datetime.utcnow().isoformat()
    if config.use_mock_api():
        try:
            out = http_client.request_sync(config.get_mock_api_url(), api_key, user_id,
                                           data.get('workspaceId'), timestamp)
            if isinstance(out, dict):
                logger.info('[SYNC] relayed %s respondents from mock API', len(out.get('respondents') or []))
                return jsonify(out)
            logger.warning('[SYNC] mock API answered with a non-object body; generating locally')
        except SyncError as e:
            logger.warning('[SYNC] mock API unavailable (%s); generating locally', e.message)
    return jsonify(local_sync_response(timestamp))


@app.route('/metrics')
def metrics():
    return generate_latest(registry), 200, {'Content-Type': CONTENT_TYPE_LATEST}
