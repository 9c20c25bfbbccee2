"""HTTP calls to a panel API (the real provider or the local mock).

Transport failures raise TransportError and non-2xx answers raise
RemoteRejection. Nothing here retries: callers decide what a failure means.
"""
import logging
from typing import Iterable, Optional

import requests

from . import config
from .errors import RemoteRejection, TransportError

logger = logging.getLogger(__name__)


def post_json(url: str, payload: dict, api_key: Optional[str] = None, timeout: Optional[float] = None) -> dict:
    """POST a JSON body and return the decoded JSON response."""
    headers = {'Content-Type': 'application/json'}
    if api_key:
        headers['Authorization'] = f'Bearer {api_key}'
    if timeout is None:
        timeout = config.get_http_timeout()
    try:
        r = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        logger.warning('POST %s failed: %s', url, e)
        raise TransportError(f'could not reach {url}: {e.__class__.__name__}') from e
    if not 200 <= r.status_code < 300:
        reason = ''
        try:
            body = r.json()
            reason = body.get('error') or body.get('message') or ''
        except ValueError:
            pass
        logger.warning('POST %s returned %s %s', url, r.status_code, reason)
        raise RemoteRejection(r.status_code, reason)
    try:
        return r.json()
    except ValueError:
        raise RemoteRejection(r.status_code, 'response body is not JSON')


def _endpoint(base_url: str, path: str) -> str:
    return base_url.rstrip('/') + path


def request_sync(base_url: str, api_key: str, user_id: Optional[str], workspace_id: str, timestamp: str,
                 timeout: Optional[float] = None) -> dict:
    body = {'userId': user_id, 'workspaceId': workspace_id, 'timestamp': timestamp}
    return post_json(_endpoint(base_url, '/api/sync'), body, api_key=api_key, timeout=timeout)


def request_proofs(base_url: str, api_key: str, respondent_ids: Iterable[str], timeout: Optional[float] = None) -> dict:
    body = {'respondentIds': list(respondent_ids)}
    return post_json(_endpoint(base_url, '/api/proof/request'), body, api_key=api_key, timeout=timeout)


def proof_status_batch(base_url: str, api_key: str, respondent_ids: Iterable[str], timeout: Optional[float] = None) -> dict:
    body = {'respondentIds': list(respondent_ids)}
    return post_json(_endpoint(base_url, '/api/proof/status/batch'), body, api_key=api_key, timeout=timeout)
