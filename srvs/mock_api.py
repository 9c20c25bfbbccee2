"""Mock external panel API for local demos.

Simulates a panel provider's database: every respondent has private
attributes that never leave this process except through the admin routes.
Sync responses carry only ids, salted commitments and the query each
respondent is asked to satisfy.
"""
import logging
import os
import random
import secrets
import threading
import time
from datetime import datetime

from flask import Flask, jsonify, request

from . import commitment, config
from .query import Query, build_query, evaluate, parse_query

logger = logging.getLogger(__name__)

app = Flask(__name__)

NAMES = ['John Doe', 'Jane Smith', 'Bob Wilson', 'Alice Brown', 'Charlie Davis',
         'Eva Martinez', 'Frank Miller', 'Grace Lee', 'Henry Taylor', 'Iris Johnson',
         'Jack White', 'Karen Black', 'Leo Green', 'Mia Clark', 'Noah Adams']
DOMAINS = ['gmail.com', 'yahoo.com', 'outlook.com', 'company.com']
CHOICES = {
    'gender': ['Male', 'Female', 'Non-binary', 'Prefer not to say'],
    'location': ['New York', 'Los Angeles', 'Chicago', 'Houston', 'Phoenix', 'San Diego'],
    'job_title': ['Software Engineer', 'Product Manager', 'Data Analyst', 'Marketing Director',
                  'Sales Manager', 'HR Specialist', 'Finance Manager', 'Operations Lead'],
    'industry': ['Technology', 'Healthcare', 'Finance', 'Retail', 'Manufacturing', 'Education', 'Media', 'Consulting'],
    'company_size': ['1-10', '11-50', '51-200', '201-500', '501-1000', '1000+'],
    'seniority': ['Entry', 'Mid', 'Senior', 'Lead', 'Manager', 'Director', 'VP', 'C-Level'],
    'department': ['Engineering', 'Product', 'Marketing', 'Sales', 'HR', 'Finance', 'Operations', 'Legal'],
    'education': ['High School', 'Bachelor', 'Master', 'PhD'],
}
ALL_ATTRIBUTES = ['age', 'gender', 'income', 'location', 'job_title', 'industry',
                  'company_size', 'seniority', 'department', 'education']
DOCUMENT_ATTRIBUTES = {'age', 'gender', 'income', 'location', 'education'}
LINKEDIN_ATTRIBUTES = {'job_title', 'industry', 'company_size', 'occupation', 'seniority', 'department'}
# identity fields are part of the record commitment but get no attribute commitment
IDENTITY_FIELDS = ('name', 'email')

QUERY_TEMPLATES = [
    "age >= 20 AND age <= 40 AND job_title = 'Engineer'",
    "age >= 25 AND age <= 45 AND income >= 40000 AND income <= 100000",
    "education = 'Master' AND seniority = 'Senior'",
    "location = 'New York' AND age >= 25 AND age <= 50",
    "job_title = 'Manager' AND income >= 60000 AND income <= 150000",
    "age >= 18 AND age <= 35 AND gender = 'Female'",
    "income >= 50000 AND income <= 120000 AND location = 'Chicago'",
    "department = 'Engineering' AND seniority = 'Lead'",
    "age >= 30 AND age <= 55 AND education = 'PhD'",
    "industry = 'Technology' AND company_size = '201-500'",
]

# probability that /api/proof/verify reports a failed verification
VERIFY_FAILURE_RATE = 0.1

_lock = threading.Lock()
STORE = []


def _bearer():
    auth = request.headers.get('Authorization') or ''
    parts = auth.split(' ', 1)
    if len(parts) == 2 and parts[0].lower() == 'bearer' and parts[1].strip():
        return parts[1].strip()
    return None


def recommended_methods(attributes) -> list:
    attrs = set(attributes or [])
    has_doc = bool(attrs & DOCUMENT_ATTRIBUTES)
    has_li = bool(attrs & LINKEDIN_ATTRIBUTES)
    if has_doc and has_li:
        return ['linkedin', 'document']
    if has_doc:
        return ['document']
    return ['linkedin']


def random_private_data(i: int) -> dict:
    name = random.choice(NAMES)
    data = {
        'name': name,
        'email': f"{name.lower().replace(' ', '.')}{i}@{random.choice(DOMAINS)}",
        'age': random.randint(20, 59),
        'income': random.randint(30000, 179999),
    }
    for attr, options in CHOICES.items():
        data[attr] = random.choice(options)
    return data


def make_respondent(private: dict, panel_id: str, attributes=None, test_account: bool = False) -> dict:
    salt = commitment.generate_salt()
    profile = {k: v for k, v in private.items() if k not in IDENTITY_FIELDS}
    if attributes:
        query = build_query(attributes, private)
    else:
        query = parse_query(random.choice(QUERY_TEMPLATES))
    tag = 'TEST-' if test_account else ''
    return {
        'id': f'RSP-{panel_id}-{tag}{int(time.time() * 1000)}-{secrets.token_hex(4)}',
        '_privateData': private,
        '_salt': salt,
        'hashedData': commitment.commit_record(private, salt),
        'attributeHashes': commitment.commit_attributes(profile, salt),
        'proofStatus': 'pending',
        'attributesRequiringProof': list(attributes or []),
        'recommendedVerificationMethods': recommended_methods(attributes),
        'zkpQuery': query.text,
        'zkpQueryConditions': [c.to_dict() for c in query.conditions],
        'zkpQueryLogic': query.logic,
        'zkpResult': 'pending',
        'createdAt': datetime.utcnow().isoformat(),
        'isTestAccount': test_account,
    }


def generate_respondents(count: int = 20, panel_id: str = 'DEFAULT') -> list:
    return [make_respondent(random_private_data(i), panel_id) for i in range(count)]


def make_test_respondent(panel_id: str = 'TEST') -> dict:
    data = {
        'name': 'Test Respondent',
        'email': config.get_test_email(),
        'age': 28,
        'income': 60000,
        'location': 'Chicago',
        'occupation': 'Developer',
        'education': 'Master',
    }
    return make_respondent(data, panel_id, attributes=['age', 'income', 'occupation', 'education'], test_account=True)


def reset_store(count: int = 20):
    global STORE
    with _lock:
        STORE = [make_test_respondent()] + generate_respondents(count)
    logger.info('Mock panel store reset with %s respondents', len(STORE))


def _find(respondent_id):
    for r in STORE:
        if r['id'] == respondent_id:
            return r
    return None


def sync_view(r: dict, synced_at) -> dict:
    return {
        'id': r['id'],
        'hashedData': r['hashedData'],
        'proofStatus': r['proofStatus'],
        'attributesRequiringProof': r['attributesRequiringProof'],
        'recommendedVerificationMethods': r['recommendedVerificationMethods'],
        'attributeHashes': r['attributeHashes'],
        'zkpQuery': r['zkpQuery'],
        'zkpQueryConditions': r['zkpQueryConditions'],
        'zkpQueryLogic': r['zkpQueryLogic'],
        'zkpResult': r['zkpResult'],
        'syncedAt': synced_at,
    }


@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'message': 'Mock Panel API is running', 'respondents': len(STORE)})


@app.route('/api/respondents')
def list_respondents():
    if not _bearer():
        return jsonify({'error': 'API key required'}), 401
    with _lock:
        out = [{'id': r['id'], 'hashedData': r['hashedData'], 'proofStatus': r['proofStatus'],
                'attributeHashes': r['attributeHashes'], 'createdAt': r['createdAt']} for r in STORE]
    return jsonify({'success': True, 'count': len(out), 'respondents': out})


@app.route('/api/sync', methods=['POST'])
def sync():
    if not _bearer():
        return jsonify({'error': 'API key required'}), 401
    data = request.get_json(force=True, silent=True) or {}
    timestamp = data.get('timestamp') or datetime.utcnow().isoformat()
    panel_id = data.get('panelId') or f'PNL-{secrets.token_hex(3).upper()}'
    fresh = [make_test_respondent(panel_id)]
    for i in range(random.randint(3, 10)):
        attrs = random.sample(ALL_ATTRIBUTES, random.randint(2, 5))
        fresh.append(make_respondent(random_private_data(i), panel_id, attributes=attrs))
    with _lock:
        STORE.extend(fresh)
    logger.info('[SYNC] panel=%s workspace=%s: %s new respondents', panel_id, data.get('workspaceId'), len(fresh))
    return jsonify({
        'success': True,
        'syncedAt': timestamp,
        'zkpCompliant': True,
        'dataPoints': {'respondentsAdded': len(fresh), 'respondentsUpdated': 0, 'failedRecords': 0},
        'respondents': [sync_view(r, timestamp) for r in fresh],
        'message': f'Synced {len(fresh)} respondents (IDs and commitments only)',
    })


@app.route('/api/proof/request', methods=['POST'])
def proof_request():
    if not _bearer():
        return jsonify({'error': 'API key required'}), 401
    data = request.get_json(force=True, silent=True) or {}
    ids = data.get('respondentIds') or []
    if not ids:
        return jsonify({'error': 'No respondent IDs provided'}), 400
    now = datetime.utcnow().isoformat()
    requests_out = []
    with _lock:
        for rid in ids:
            r = _find(rid)
            if r:
                r['proofStatus'] = 'processing'
            requests_out.append({
                'respondentId': rid,
                'proofRequestId': f'PRF-{int(time.time() * 1000)}-{secrets.token_hex(4)}',
                'status': 'requested' if r else 'unknown-respondent',
                'requestedAt': now,
                'estimatedCompletionTime': '24-48 hours',
            })
    return jsonify({'success': True, 'message': f'Proof requested for {len(ids)} respondent(s)', 'proofRequests': requests_out})


@app.route('/api/proof/verify', methods=['POST'])
def proof_verify():
    data = request.get_json(force=True, silent=True) or {}
    rid = data.get('respondentId')
    with _lock:
        r = _find(rid)
        if not r:
            return jsonify({'error': 'Respondent not found'}), 404
        verified = random.random() >= VERIFY_FAILURE_RATE
        if verified:
            q = Query.from_dict({'conditions': r['zkpQueryConditions'], 'logic': r['zkpQueryLogic']})
            matched = evaluate(r['_privateData'], q.conditions, q.logic)
            r['proofStatus'] = 'verified'
            r['zkpResult'] = 'Yes' if matched else 'No'
        else:
            r['proofStatus'] = 'failed'
        result = r['zkpResult']
    return jsonify({
        'success': True,
        'verified': verified,
        'respondentId': rid,
        'proofRequestId': data.get('proofRequestId'),
        'zkpResult': result,
        'verifiedAt': datetime.utcnow().isoformat() if verified else None,
        'message': 'Proof verified successfully' if verified else 'Proof verification failed',
    })


@app.route('/api/proof/status/<respondent_id>')
def proof_status(respondent_id):
    with _lock:
        r = _find(respondent_id)
        if not r:
            return jsonify({'error': 'Respondent not found'}), 404
        return jsonify({'respondentId': respondent_id, 'proofStatus': r['proofStatus'],
                        'hashedData': r['hashedData'], 'zkpQuery': r['zkpQuery'], 'zkpResult': r['zkpResult']})


@app.route('/api/proof/status/batch', methods=['POST'])
def proof_status_batch():
    if not _bearer():
        return jsonify({'error': 'API key required'}), 401
    data = request.get_json(force=True, silent=True) or {}
    ids = data.get('respondentIds') or []
    if not ids:
        return jsonify({'error': 'No respondent IDs provided'}), 400
    results = []
    with _lock:
        for rid in ids:
            r = _find(rid)
            if not r:
                results.append({'respondentId': rid, 'found': False})
                continue
            results.append({'respondentId': rid, 'found': True, 'proofStatus': r['proofStatus'],
                            'zkpQuery': r['zkpQuery'], 'zkpResult': r['zkpResult']})
    return jsonify({'success': True, 'results': results})


def _is_admin() -> bool:
    return request.headers.get('X-Admin-Key') == config.get_admin_key()


@app.route('/api/admin/respondents')
def admin_respondents():
    if not _is_admin():
        return jsonify({'error': 'Admin access required'}), 403
    with _lock:
        out = [dict(r) for r in STORE]
    return jsonify({'warning': 'This endpoint exposes private data - for testing only!', 'count': len(out), 'respondents': out})


@app.route('/api/admin/reset', methods=['POST'])
def admin_reset():
    if not _is_admin():
        return jsonify({'error': 'Admin access required'}), 403
    data = request.get_json(force=True, silent=True) or {}
    try:
        count = int(data.get('count') or 20)
    except (TypeError, ValueError):
        return jsonify({'error': 'count must be an integer'}), 400
    reset_store(count)
    return jsonify({'success': True, 'message': f'Reset with {count} new mock respondents'})


reset_store()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 3001)))
