import pytest

from srvs import commitment, mock_api
from srvs.mock_api import app
from srvs.query import evaluate_query

AUTH = {'Authorization': 'Bearer demo-key'}
ADMIN = {'X-Admin-Key': 'admin-secret-key'}


@pytest.fixture
def client():
    mock_api.reset_store(5)
    return app.test_client()


def _private(client, rid):
    rows = client.get('/api/admin/respondents', headers=ADMIN).get_json()['respondents']
    return next(r for r in rows if r['id'] == rid)


def test_health(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.get_json()['respondents'] == 6


def test_sync_requires_bearer(client):
    assert client.post('/api/sync', json={'userId': 'u'}).status_code == 401
    assert client.post('/api/proof/request', json={'respondentIds': ['x']}).status_code == 401
    assert client.get('/api/respondents').status_code == 401


def test_sync_returns_commitments_only(client):
    r = client.post('/api/sync', json={'userId': 'u1', 'workspaceId': 'panel', 'panelId': 'PNL-T',
                                       'timestamp': '2026-03-01T00:00:00'}, headers=AUTH)
    assert r.status_code == 200
    data = r.get_json()
    assert data['success'] is True
    assert data['dataPoints']['respondentsAdded'] == len(data['respondents'])
    assert 4 <= len(data['respondents']) <= 11
    for resp in data['respondents']:
        assert resp['id'].startswith('RSP-PNL-T-')
        assert resp['syncedAt'] == '2026-03-01T00:00:00'
        assert resp['proofStatus'] == 'pending'
        assert resp['zkpResult'] == 'pending'
        assert 'email' not in resp and '_privateData' not in resp and '_salt' not in resp


def test_sync_digests_match_private_data(client):
    data = client.post('/api/sync', json={'userId': 'u1'}, headers=AUTH).get_json()
    resp = data['respondents'][1]
    private = _private(client, resp['id'])
    salt = private['_salt']
    assert resp['hashedData'] == commitment.commit_record(private['_privateData'], salt)
    for name, digest in resp['attributeHashes'].items():
        assert digest == commitment.commit_attribute(name, private['_privateData'][name], salt)
    assert 'name' not in resp['attributeHashes'] and 'email' not in resp['attributeHashes']


def test_generated_queries_hold_for_their_respondent(client):
    data = client.post('/api/sync', json={'userId': 'u1'}, headers=AUTH).get_json()
    for resp in data['respondents']:
        private = _private(client, resp['id'])['_privateData']
        assert evaluate_query(private, {'conditions': resp['zkpQueryConditions'], 'logic': resp['zkpQueryLogic']})


def test_test_respondent_uses_configured_email(client, monkeypatch):
    monkeypatch.setenv('TEST_EMAIL', 'qa@example.org')
    data = client.post('/api/sync', json={'userId': 'u1'}, headers=AUTH).get_json()
    first = data['respondents'][0]
    assert '-TEST-' in first['id']
    assert _private(client, first['id'])['_privateData']['email'] == 'qa@example.org'


def test_proof_request_and_verify(client, monkeypatch):
    monkeypatch.setattr(mock_api, 'VERIFY_FAILURE_RATE', 0.0)
    rid = client.post('/api/sync', json={'userId': 'u1'}, headers=AUTH).get_json()['respondents'][0]['id']
    r = client.post('/api/proof/request', json={'respondentIds': [rid]}, headers=AUTH)
    assert r.status_code == 200
    req = r.get_json()['proofRequests'][0]
    assert req['status'] == 'requested'
    assert client.get(f'/api/proof/status/{rid}').get_json()['proofStatus'] == 'processing'
    v = client.post('/api/proof/verify', json={'respondentId': rid, 'proofRequestId': req['proofRequestId']}).get_json()
    assert v['verified'] is True
    assert v['zkpResult'] == 'Yes'
    batch = client.post('/api/proof/status/batch', json={'respondentIds': [rid, 'missing']}, headers=AUTH).get_json()
    assert batch['results'][0]['proofStatus'] == 'verified'
    assert batch['results'][1] == {'respondentId': 'missing', 'found': False}


def test_failed_verification_marks_failed(client, monkeypatch):
    monkeypatch.setattr(mock_api, 'VERIFY_FAILURE_RATE', 1.0)
    rid = client.post('/api/sync', json={'userId': 'u1'}, headers=AUTH).get_json()['respondents'][0]['id']
    v = client.post('/api/proof/verify', json={'respondentId': rid}).get_json()
    assert v['verified'] is False
    assert client.get(f'/api/proof/status/{rid}').get_json()['proofStatus'] == 'failed'


def test_unknown_respondent_404(client):
    assert client.get('/api/proof/status/nope').status_code == 404
    assert client.post('/api/proof/verify', json={'respondentId': 'nope'}).status_code == 404


def test_empty_id_lists_rejected(client):
    assert client.post('/api/proof/request', json={'respondentIds': []}, headers=AUTH).status_code == 400
    assert client.post('/api/proof/status/batch', json={}, headers=AUTH).status_code == 400


def test_admin_routes_need_key(client, monkeypatch):
    assert client.get('/api/admin/respondents').status_code == 403
    assert client.post('/api/admin/reset', headers={'X-Admin-Key': 'wrong'}).status_code == 403
    monkeypatch.setenv('SRVS_ADMIN_KEY', 'rotated')
    r = client.post('/api/admin/reset', json={'count': 2}, headers={'X-Admin-Key': 'rotated'})
    assert r.status_code == 200
    assert client.get('/health').get_json()['respondents'] == 3


def test_recommended_methods():
    assert mock_api.recommended_methods(['age']) == ['document']
    assert mock_api.recommended_methods(['industry']) == ['linkedin']
    assert mock_api.recommended_methods(['age', 'seniority']) == ['linkedin', 'document']
    assert mock_api.recommended_methods([]) == ['linkedin']
