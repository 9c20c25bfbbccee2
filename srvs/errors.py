"""Error types shared by the scheduler, the panel API client and the REST layer.

Every error carries a machine-readable code and a message that is safe to
return to API callers (never an API key or private attribute value).
"""
from typing import Any, Dict, Optional


class SRVSError(Exception):
    code = 'SRVS_INTERNAL_ERROR'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'error': self.message, 'details': self.details}


class ConfigurationError(SRVSError):
    """Missing or invalid credentials/endpoint for a workspace."""
    code = 'SRVS_CONFIG_MISSING'


class UnknownWorkspaceError(SRVSError):
    code = 'SRVS_WORKSPACE_UNKNOWN'

    def __init__(self, workspace: str):
        super().__init__(f'unknown workspace: {workspace}', {'workspace': workspace})


class SyncError(SRVSError):
    """Base class for failures talking to a panel API."""
    code = 'SRVS_SYNC_FAILED'


class TransportError(SyncError):
    code = 'SRVS_SYNC_TRANSPORT'


class RemoteRejection(SyncError):
    code = 'SRVS_SYNC_REJECTED'

    def __init__(self, status_code: int, reason: str = ''):
        msg = f'panel API returned HTTP {status_code}'
        if reason:
            msg = f'{msg}: {reason}'
        super().__init__(msg, {'status_code': status_code})
        self.status_code = status_code


class QueryParseError(SRVSError, ValueError):
    code = 'SRVS_QUERY_INVALID'
