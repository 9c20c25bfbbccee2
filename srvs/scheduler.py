"""Per-workspace auto-sync scheduling.

Each workspace ("panel" and "insight") has its own WorkspaceScheduler with
its own credentials, countdown, in-flight lock and pair of interval jobs.
All of them share one APScheduler BackgroundScheduler owned by the
SchedulerRegistry; job ids are ``<workspace>:tick`` and ``<workspace>:sync``.

While enabled, the tick job decrements the visible countdown once a second
and the sync job fires every ``interval_seconds``. Both are anchored at the
instant auto-sync was turned on, so they stay in lockstep.

Guarantees:
  - at most one sync call in flight per workspace; a fire or manual trigger
    that finds one outstanding is skipped, not queued;
  - disabling removes both jobs at once; a sync dispatched before the disable
    completes but its result is discarded;
  - failures never cancel the schedule and never raise out of this module.

There is no backoff: a failing panel API is retried on the normal cadence
for as long as auto-sync stays on.
"""
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from . import db, http_client
from .errors import ConfigurationError, SyncError, UnknownWorkspaceError
from .metrics import AUTO_SYNC_GAUGE, MERGED_COUNTER, SYNC_COUNTER

logger = logging.getLogger(__name__)

WORKSPACES = ('panel', 'insight')
SYNC_INTERVAL_SECONDS = 30
TICK_SECONDS = 1


def check_workspace(workspace: str) -> str:
    if workspace not in WORKSPACES:
        raise UnknownWorkspaceError(workspace)
    return workspace


def _now() -> str:
    return datetime.utcnow().isoformat()


def to_local_record(r: dict, synced_at: str) -> dict:
    """Map a panel API respondent onto the locally persisted record shape."""
    proof = str(r.get('proofStatus') or 'pending').lower()
    if proof not in db.PROOF_STATUSES:
        proof = 'pending'
    result = str(r.get('zkpResult') or 'pending').lower()
    if result not in db.QUERY_RESULTS:
        result = 'pending'
    rid = r.get('id')
    return {
        'id': str(rid) if rid is not None else '',
        'commitment': r.get('hashedData'),
        'proofStatus': proof,
        'attributesPendingProof': list(r.get('attributesRequiringProof') or []),
        'attributeCommitments': dict(r.get('attributeHashes') or {}),
        'query': r.get('zkpQuery'),
        'queryConditions': r.get('zkpQueryConditions'),
        'queryLogic': r.get('zkpQueryLogic'),
        'queryResult': result,
        'recommendedVerificationMethods': list(r.get('recommendedVerificationMethods') or []),
        'syncedAt': r.get('syncedAt') or synced_at,
        'emailSent': False,
    }


@dataclass
class SyncResult:
    success: bool
    added_count: int = 0
    reported_count: int = 0
    skipped: bool = False
    discarded: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'addedCount': self.added_count,
            'reportedCount': self.reported_count,
            'skipped': self.skipped,
            'discarded': self.discarded,
            'error': self.error,
        }


@dataclass
class SessionState:
    enabled: bool = False
    interval_seconds: int = SYNC_INTERVAL_SECONDS
    countdown: int = SYNC_INTERVAL_SECONDS
    in_flight: bool = False
    last_sync_at: Optional[str] = None
    last_error: Optional[str] = None


class WorkspaceScheduler:
    def __init__(self, workspace: str, timer: BackgroundScheduler, interval_seconds: int = SYNC_INTERVAL_SECONDS,
                 sync_call: Optional[Callable[..., dict]] = None):
        self.workspace = check_workspace(workspace)
        self.timer = timer
        self.sync_call = sync_call or http_client.request_sync
        self.session = SessionState(interval_seconds=interval_seconds, countdown=interval_seconds)
        # single slot: held for the whole duration of a sync call
        self._flight = threading.Lock()
        # guards session fields, the epoch and the merge step
        self._state = threading.RLock()
        # bumped on every enabled -> disabled transition
        self._epoch = 0

    @property
    def tick_job_id(self) -> str:
        return f'{self.workspace}:tick'

    @property
    def sync_job_id(self) -> str:
        return f'{self.workspace}:sync'

    def credentials(self) -> dict:
        ws = db.get_workspace(self.workspace)
        if not ws.get('api_key') or not ws.get('base_url'):
            raise ConfigurationError(f'{self.workspace}: API key and panel API URL are required',
                                     {'workspace': self.workspace})
        return ws

    def rehydrate(self):
        """Restore last sync time and the auto-sync preference from storage."""
        ws = db.get_workspace(self.workspace)
        with self._state:
            self.session.last_sync_at = ws.get('last_sync_at')
        if ws.get('auto_sync_enabled') and not self.start():
            db.set_auto_sync(self.workspace, False)

    def start(self) -> bool:
        """Enable auto-sync. Returns False, leaving it off, when credentials are missing."""
        with self._state:
            if self.session.enabled:
                return True
        try:
            self.credentials()
        except ConfigurationError as e:
            with self._state:
                self.session.last_error = e.message
            logger.warning('Not enabling auto-sync: %s', e.message)
            return False
        except sqlite3.Error as e:
            with self._state:
                self.session.last_error = f'storage error: {e}'
            logger.exception('Could not read credentials for %s', self.workspace)
            return False
        with self._state:
            if self.session.enabled:
                return True
            interval = self.session.interval_seconds
            self.session.enabled = True
            self.session.countdown = interval
            self.session.last_error = None
            self._remove_jobs()
            anchor = datetime.now(self.timer.timezone)
            self.timer.add_job(self.tick, 'interval', seconds=TICK_SECONDS, id=self.tick_job_id,
                               start_date=anchor + timedelta(seconds=TICK_SECONDS),
                               replace_existing=True, max_instances=1, coalesce=True)
            self.timer.add_job(self.fire, 'interval', seconds=interval, id=self.sync_job_id,
                               start_date=anchor + timedelta(seconds=interval),
                               replace_existing=True, max_instances=1, coalesce=True)
        logger.info('Auto-sync enabled for %s (every %ss)', self.workspace, interval)
        return True

    def stop(self):
        with self._state:
            was_enabled = self.session.enabled
            if was_enabled:
                self._epoch += 1
            self.session.enabled = False
            self.session.countdown = self.session.interval_seconds
            self._remove_jobs()
        if was_enabled:
            logger.info('Auto-sync disabled for %s', self.workspace)

    def dispose(self):
        self.stop()

    def _remove_jobs(self):
        for job_id in (self.tick_job_id, self.sync_job_id):
            try:
                self.timer.remove_job(job_id)
            except JobLookupError:
                pass

    def tick(self):
        with self._state:
            if not self.session.enabled:
                return
            if self.session.countdown <= 1:
                self.session.countdown = self.session.interval_seconds
            else:
                self.session.countdown -= 1

    def fire(self):
        with self._state:
            if not self.session.enabled:
                return
            epoch = self._epoch
        self.trigger_sync(silent=True, epoch=epoch)

    def trigger_sync(self, silent: bool = False, epoch: Optional[int] = None) -> SyncResult:
        """Run one sync now. ``epoch`` pins a timer fire to the enable it was scheduled under."""
        try:
            creds = self.credentials()
        except ConfigurationError as e:
            if not silent:
                with self._state:
                    self.session.last_error = e.message
            SYNC_COUNTER.labels(self.workspace, 'unconfigured').inc()
            return SyncResult(False, error=e.message)
        except sqlite3.Error as e:
            logger.exception('Could not read credentials for %s', self.workspace)
            return self._fail(f'storage error: {e}', silent)
        if not self._flight.acquire(blocking=False):
            logger.info('Sync for %s already in flight; skipping', self.workspace)
            SYNC_COUNTER.labels(self.workspace, 'skipped').inc()
            return SyncResult(False, skipped=True, error='sync already in progress')
        try:
            with self._state:
                if epoch is None:
                    epoch = self._epoch
                elif epoch != self._epoch:
                    SYNC_COUNTER.labels(self.workspace, 'discarded').inc()
                    return SyncResult(False, discarded=True, error='auto-sync was disabled before the sync started')
                self.session.in_flight = True
            return self._run(creds, epoch, silent)
        finally:
            with self._state:
                self.session.in_flight = False
            self._flight.release()

    def _fail(self, message: str, silent: bool, outcome: str = 'failed') -> SyncResult:
        logger.log(logging.DEBUG if silent else logging.WARNING, 'Sync for %s failed: %s', self.workspace, message)
        if not silent:
            with self._state:
                self.session.last_error = message
        SYNC_COUNTER.labels(self.workspace, outcome).inc()
        return SyncResult(False, error=message)

    def _run(self, creds: dict, epoch: int, silent: bool) -> SyncResult:
        started = _now()
        try:
            data = self.sync_call(creds['base_url'], creds['api_key'], creds.get('user_id'), self.workspace, started)
        except SyncError as e:
            return self._fail(e.message, silent)
        except Exception as e:
            logger.exception('Unexpected error syncing %s', self.workspace)
            return self._fail(f'unexpected error: {e}', silent)
        if not isinstance(data, dict):
            return self._fail('panel API response is not a JSON object', silent)
        try:
            respondents = data.get('respondents') or []
            records = [to_local_record(r, started) for r in respondents if isinstance(r, dict)]
            records = [r for r in records if r['id']]
            reported = int((data.get('dataPoints') or {}).get('respondentsAdded') or 0)
        except (TypeError, ValueError, AttributeError) as e:
            return self._fail(f'malformed panel API response: {e}', silent)
        with self._state:
            if self._epoch != epoch:
                logger.info('Discarding sync result for %s: auto-sync was disabled while in flight', self.workspace)
                SYNC_COUNTER.labels(self.workspace, 'discarded').inc()
                return SyncResult(False, discarded=True, error='auto-sync was disabled while the sync was in flight')
            now = _now()
            try:
                added = db.merge_respondents(self.workspace, records, last_sync_at=now)
            except sqlite3.Error as e:
                logger.exception('Could not store sync result for %s', self.workspace)
                return self._fail(f'storage error: {e}', silent)
            self.session.last_sync_at = now
            self.session.countdown = self.session.interval_seconds
            self.session.last_error = None
        SYNC_COUNTER.labels(self.workspace, 'success').inc()
        MERGED_COUNTER.labels(self.workspace).inc(added)
        logger.info('Synced %s: %s new of %s received', self.workspace, added, len(records))
        return SyncResult(True, added_count=added, reported_count=reported)

    def status(self) -> dict:
        with self._state:
            s = self.session
            return {
                'workspace': self.workspace,
                'enabled': s.enabled,
                'intervalSeconds': s.interval_seconds,
                'countdown': s.countdown,
                'inFlight': s.in_flight,
                'lastSyncAt': s.last_sync_at,
                'lastError': s.last_error,
            }


class SchedulerRegistry:
    """Owns the shared timer and one WorkspaceScheduler per workspace."""

    def __init__(self, timer: Optional[BackgroundScheduler] = None, interval_seconds: int = SYNC_INTERVAL_SECONDS,
                 sync_call: Optional[Callable[..., dict]] = None):
        self.timer = timer or BackgroundScheduler()
        self.schedulers: Dict[str, WorkspaceScheduler] = {
            ws: WorkspaceScheduler(ws, self.timer, interval_seconds, sync_call) for ws in WORKSPACES
        }

    def start(self):
        db.init_db()
        if not self.timer.running:
            self.timer.start()
        for ws, sch in self.schedulers.items():
            sch.rehydrate()
            AUTO_SYNC_GAUGE.labels(ws).set(1 if sch.session.enabled else 0)

    def get(self, workspace: str) -> WorkspaceScheduler:
        return self.schedulers[check_workspace(workspace)]

    def set_enabled(self, workspace: str, enabled: bool) -> bool:
        """Turn auto-sync on or off; returns whether it is on afterwards."""
        sch = self.get(workspace)
        if enabled:
            on = sch.start()
        else:
            sch.stop()
            on = False
        db.set_auto_sync(workspace, on)
        AUTO_SYNC_GAUGE.labels(workspace).set(1 if on else 0)
        return on

    def trigger_sync(self, workspace: str, silent: bool = False) -> SyncResult:
        return self.get(workspace).trigger_sync(silent=silent)

    def status(self, workspace: str) -> dict:
        return self.get(workspace).status()

    def dispose(self):
        for sch in self.schedulers.values():
            sch.dispose()
        if self.timer.running:
            self.timer.shutdown(wait=False)


_registry: Optional[SchedulerRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> SchedulerRegistry:
    """Process-wide registry, created and started on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = SchedulerRegistry()
            _registry.start()
        return _registry


def set_registry(registry: Optional[SchedulerRegistry]):
    global _registry
    with _registry_lock:
        _registry = registry
