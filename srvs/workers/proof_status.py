"""Proof status worker.

Polls each configured workspace's panel API for the proof status of
respondents that are not yet settled, and records verified/failed outcomes
(with the yes/no query result) locally. Statuses the panel reports as still
in progress are left alone.
"""
import logging
import time
from typing import Optional

from .. import db, http_client, scheduler
from ..errors import SyncError

logger = logging.getLogger(__name__)

SETTLED = ('verified', 'failed')
BATCH_SIZE = 50


def pending_ids(workspace: str) -> list:
    return [r['id'] for r in db.list_respondents(workspace) if r['proofStatus'] not in SETTLED]


def apply_status(workspace: str, item: dict) -> bool:
    """Record one batch-status entry; returns True when the local row changed."""
    if not item.get('found'):
        return False
    status = str(item.get('proofStatus') or '').lower()
    if status not in SETTLED:
        return False
    result = str(item.get('zkpResult') or 'pending').lower()
    if result not in db.QUERY_RESULTS:
        result = 'pending'
    return db.record_verification(workspace, item.get('respondentId'), status, result)


def run_once(workspace: Optional[str] = None) -> int:
    """Poll one workspace, or every workspace with credentials. Returns rows updated."""
    updated = 0
    for ws in ([scheduler.check_workspace(workspace)] if workspace else scheduler.WORKSPACES):
        creds = db.get_workspace(ws)
        if not creds.get('api_key') or not creds.get('base_url'):
            logger.debug('Skipping %s: no credentials', ws)
            continue
        ids = pending_ids(ws)
        for i in range(0, len(ids), BATCH_SIZE):
            chunk = ids[i:i + BATCH_SIZE]
            try:
                data = http_client.proof_status_batch(creds['base_url'], creds['api_key'], chunk)
            except SyncError as e:
                logger.warning('Proof status poll for %s failed: %s', ws, e.message)
                break
            for item in (data.get('results') or []) if isinstance(data, dict) else []:
                if isinstance(item, dict) and apply_status(ws, item):
                    updated += 1
                    logger.info('Recorded %s proof for %s/%s', item.get('proofStatus'), ws, item.get('respondentId'))
    return updated


def run_loop(interval_seconds: int = 300):
    while True:
        run_once()
        time.sleep(interval_seconds)
