from srvs import db, http_client
from srvs.errors import TransportError
from srvs.workers import proof_status


def _seed():
    db.set_credentials('panel', 'k', 'http://panel.test')
    db.merge_respondents('panel', [{'id': i, 'commitment': 'h'} for i in ('a', 'b', 'c', 'd')])
    db.record_verification('panel', 'd', 'verified', 'no')


def test_run_once_records_settled_statuses(monkeypatch):
    _seed()
    asked = []

    def fake(base_url, api_key, ids):
        asked.append(list(ids))
        return {'success': True, 'results': [
            {'respondentId': 'a', 'found': True, 'proofStatus': 'verified', 'zkpResult': 'Yes'},
            {'respondentId': 'b', 'found': True, 'proofStatus': 'processing', 'zkpResult': 'pending'},
            {'respondentId': 'c', 'found': True, 'proofStatus': 'failed', 'zkpResult': 'pending'},
        ]}

    monkeypatch.setattr(http_client, 'proof_status_batch', fake)
    assert proof_status.run_once('panel') == 2
    assert asked == [['a', 'b', 'c']]
    got = {r['id']: (r['proofStatus'], r['queryResult']) for r in db.list_respondents('panel')}
    assert got == {'a': ('verified', 'yes'), 'b': ('pending', 'pending'),
                   'c': ('failed', 'pending'), 'd': ('verified', 'no')}


def test_unconfigured_workspaces_are_skipped(monkeypatch):
    db.merge_respondents('insight', [{'id': 'x'}])

    def fail(*args):
        raise AssertionError('should not be called')

    monkeypatch.setattr(http_client, 'proof_status_batch', fail)
    assert proof_status.run_once() == 0


def test_poll_failure_is_logged_not_raised(monkeypatch):
    _seed()

    def down(*args):
        raise TransportError('offline')

    monkeypatch.setattr(http_client, 'proof_status_batch', down)
    assert proof_status.run_once('panel') == 0


def test_unknown_entries_ignored():
    assert proof_status.apply_status('panel', {'respondentId': 'a', 'found': False}) is False
    assert proof_status.apply_status('panel', {'respondentId': 'zz', 'found': True, 'proofStatus': 'verified'}) is False
