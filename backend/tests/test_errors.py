from repairdesk.errors import NotFound, InvalidTransition, Expired, InvalidOtp, ConfigurationError
from tests.test_lifecycle_helpers import jwt_headers


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_domain_error_payloads():
    assert NotFound('gone').to_payload() == {'error': {'status': 404, 'title': 'Not Found', 'detail': 'gone'}}
    err = InvalidTransition('Pending', 'Delivered')
    assert err.status == 400
    assert err.detail == 'Invalid status transition Pending -> Delivered'
    assert Expired().detail == 'OTP expired'
    assert InvalidOtp('nope').to_payload()['error']['title'] == 'Invalid OTP'
    assert 'problems' not in ConfigurationError('bad').to_payload()['error']
    assert ConfigurationError('bad', ['x']).to_payload()['error']['problems'] == ['x']


def test_internal_error_shape(app_context, monkeypatch):
    client = app_context.test_client()
    headers = jwt_headers(1, ['RCPT.READ'])
    import repairdesk.routes.receipts as rcpt_mod
    class BoomSession:
        def execute(self, *a, **k):
            raise RuntimeError('explode')
    monkeypatch.setattr(rcpt_mod, 'get_db', lambda: BoomSession())
    resp = client.get('/receipts', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
    assert 'explode' not in body['error']['detail']


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}
