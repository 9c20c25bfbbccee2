import json
import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional

from . import config

PROOF_STATUSES = ('pending', 'partial', 'verified', 'failed')
QUERY_RESULTS = ('pending', 'yes', 'no')


def get_conn():
    path = config.get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    conn = get_conn()
    cur = conn.cursor()
    cur.executescript("""
    CREATE TABLE IF NOT EXISTS Respondents (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        workspace TEXT NOT NULL,
        id TEXT NOT NULL,
        commitment TEXT,
        proof_status TEXT DEFAULT 'pending',
        attributes_pending TEXT,
        attribute_commitments TEXT,
        query TEXT,
        query_conditions TEXT,
        query_logic TEXT,
        query_result TEXT DEFAULT 'pending',
        recommended_methods TEXT,
        synced_at TEXT,
        email_sent INTEGER DEFAULT 0,
        UNIQUE(workspace, id)
    );
    CREATE TABLE IF NOT EXISTS Workspaces (
        workspace TEXT PRIMARY KEY,
        api_key TEXT,
        base_url TEXT,
        user_id TEXT,
        auto_sync_enabled INTEGER DEFAULT 0,
        last_sync_at TEXT
    );
    """)
    conn.commit()
    conn.close()


def _loads(v, default):
    if not v:
        return default
    try:
        return json.loads(v)
    except ValueError:
        return default


def _row_to_respondent(row) -> dict:
    return {
        'id': row['id'],
        'commitment': row['commitment'],
        'proofStatus': row['proof_status'],
        'attributesPendingProof': _loads(row['attributes_pending'], []),
        'attributeCommitments': _loads(row['attribute_commitments'], {}),
        'query': row['query'],
        'queryConditions': _loads(row['query_conditions'], None),
        'queryLogic': row['query_logic'],
        'queryResult': row['query_result'],
        'recommendedVerificationMethods': _loads(row['recommended_methods'], []),
        'syncedAt': row['synced_at'],
        'emailSent': bool(row['email_sent']),
    }


def merge_respondents(workspace: str, records: Iterable[dict], last_sync_at: Optional[str] = None) -> int:
    """Append records whose id is not yet present in the workspace.

    Runs as one write transaction: read existing ids, filter, insert, and
    stamp the workspace's last sync time when ``last_sync_at`` is given.
    Existing rows are never touched (first write wins). Returns the number added.
    """
    conn = get_conn()
    try:
        conn.execute('BEGIN IMMEDIATE')
        existing = {r['id'] for r in conn.execute('SELECT id FROM Respondents WHERE workspace=?', (workspace,))}
        added = 0
        for rec in records:
            rid = rec.get('id')
            rid = str(rid) if rid is not None else ''
            if not rid or rid in existing:
                continue
            cur = conn.execute(
                "INSERT OR IGNORE INTO Respondents (workspace, id, commitment, proof_status, attributes_pending, attribute_commitments, query, query_conditions, query_logic, query_result, recommended_methods, synced_at, email_sent) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)",
                (workspace, rid, rec.get('commitment'), rec.get('proofStatus') or 'pending',
                 json.dumps(rec.get('attributesPendingProof') or []),
                 json.dumps(rec.get('attributeCommitments') or {}),
                 rec.get('query'),
                 json.dumps(rec['queryConditions']) if rec.get('queryConditions') is not None else None,
                 rec.get('queryLogic'),
                 rec.get('queryResult') or 'pending',
                 json.dumps(rec.get('recommendedVerificationMethods') or []),
                 rec.get('syncedAt') or datetime.utcnow().isoformat()))
            existing.add(rid)
            if cur.rowcount == 1:
                added += 1
        if last_sync_at is not None:
            _ensure_workspace(conn, workspace)
            conn.execute('UPDATE Workspaces SET last_sync_at=? WHERE workspace=?', (last_sync_at, workspace))
        conn.commit()
        return added
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def list_respondents(workspace: str) -> List[dict]:
    conn = get_conn()
    rows = conn.execute('SELECT * FROM Respondents WHERE workspace=? ORDER BY seq', (workspace,)).fetchall()
    conn.close()
    return [_row_to_respondent(r) for r in rows]


def get_respondent(workspace: str, respondent_id: str) -> Optional[dict]:
    conn = get_conn()
    row = conn.execute('SELECT * FROM Respondents WHERE workspace=? AND id=?', (workspace, respondent_id)).fetchone()
    conn.close()
    return _row_to_respondent(row) if row else None


def count_respondents(workspace: Optional[str] = None) -> int:
    conn = get_conn()
    if workspace:
        n = conn.execute('SELECT COUNT(*) FROM Respondents WHERE workspace=?', (workspace,)).fetchone()[0]
    else:
        n = conn.execute('SELECT COUNT(*) FROM Respondents').fetchone()[0]
    conn.close()
    return n


def mark_email_sent(workspace: str, respondent_ids: Iterable[str]) -> int:
    ids = list(respondent_ids)
    if not ids:
        return 0
    conn = get_conn()
    cur = conn.cursor()
    placeholders = ','.join('?' for _ in ids)
    cur.execute(f'UPDATE Respondents SET email_sent=1 WHERE workspace=? AND id IN ({placeholders})', [workspace] + ids)
    conn.commit()
    n = cur.rowcount
    conn.close()
    return n


def record_verification(workspace: str, respondent_id: str, proof_status: str, query_result: Optional[str] = None) -> bool:
    """Store the outcome of a verification flow for one respondent."""
    if proof_status not in PROOF_STATUSES:
        raise ValueError(f'invalid proof status: {proof_status}')
    if query_result is not None and query_result not in QUERY_RESULTS:
        raise ValueError(f'invalid query result: {query_result}')
    conn = get_conn()
    cur = conn.cursor()
    if query_result is None:
        cur.execute('UPDATE Respondents SET proof_status=? WHERE workspace=? AND id=?', (proof_status, workspace, respondent_id))
    else:
        cur.execute('UPDATE Respondents SET proof_status=?, query_result=? WHERE workspace=? AND id=?', (proof_status, query_result, workspace, respondent_id))
    conn.commit()
    ok = cur.rowcount > 0
    conn.close()
    return ok


def _ensure_workspace(cur, workspace: str):
    cur.execute('INSERT OR IGNORE INTO Workspaces (workspace) VALUES (?)', (workspace,))


def get_workspace(workspace: str) -> dict:
    conn = get_conn()
    row = conn.execute('SELECT * FROM Workspaces WHERE workspace=?', (workspace,)).fetchone()
    conn.close()
    if not row:
        return {'workspace': workspace, 'api_key': None, 'base_url': None, 'user_id': None,
                'auto_sync_enabled': False, 'last_sync_at': None}
    d = dict(row)
    d['auto_sync_enabled'] = bool(d['auto_sync_enabled'])
    return d


def set_credentials(workspace: str, api_key: Optional[str], base_url: Optional[str], user_id: Optional[str] = None):
    conn = get_conn()
    cur = conn.cursor()
    _ensure_workspace(cur, workspace)
    cur.execute('UPDATE Workspaces SET api_key=?, base_url=?, user_id=? WHERE workspace=?', (api_key, base_url, user_id, workspace))
    conn.commit()
    conn.close()


def set_auto_sync(workspace: str, enabled: bool):
    conn = get_conn()
    cur = conn.cursor()
    _ensure_workspace(cur, workspace)
    cur.execute('UPDATE Workspaces SET auto_sync_enabled=? WHERE workspace=?', (1 if enabled else 0, workspace))
    conn.commit()
    conn.close()
