import pytest
from flask import Flask
from repairdesk.constants.permissions import ALL_PERMISSION_CODES, expand_role
from tests.test_lifecycle_helpers import jwt_headers


def test_role_presets_expand():
    assert expand_role('technician') == ['RCPT.READ', 'RCPT.MANAGE', 'RCPT.DELIVER']
    assert set(expand_role('admin')) == set(ALL_PERMISSION_CODES)
    assert expand_role('visitor') == []


@pytest.mark.parametrize('method,url,perms', [
    ('get', '/receipts', ['SVC.READ']),
    ('post', '/receipts', ['RCPT.READ']),
    ('get', '/service-complaints', ['RCPT.READ']),
    ('post', '/service-complaints', ['SVC.READ']),
    ('post', '/service-complaints/1/visits', ['SVC.READ']),
    ('post', '/receipts/1/override-status', ['RCPT.MANAGE']),
    ('put', '/settings/notifications', ['RCPT.MANAGE']),
])
def test_missing_permission_is_403(app_context: Flask, method, url, perms):
    client = app_context.test_client()
    resp = getattr(client, method)(url, json={}, headers=jwt_headers(1, perms))
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'Missing permission'


def test_service_engineer_preset_covers_service_endpoints(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(7, expand_role('service_engineer'))
    assert client.get('/service-complaints', headers=headers).status_code == 200
    assert client.get('/receipts', headers=headers).status_code == 403
