import pytest
from flask import Flask
from sqlalchemy import select, update
from repairdesk import get_db
from repairdesk.models.otp_challenge import OtpChallenge
from tests.test_lifecycle_helpers import jwt_headers, create_resource_and_assert, assert_status_change

TECH_PERMS = ['RCPT.READ', 'RCPT.MANAGE', 'RCPT.DELIVER']

RECEIPT = {
    'customer_name': 'Ramesh Kumar',
    'mobile': '9876543210',
    'product': 'LED TV',
    'model': 'LG 43UQ75',
    'problem_description': 'No display',
    'estimated_amount': 2500,
}


def _latest_code(receipt_id: int) -> str:
    session = get_db()
    return session.execute(
        select(OtpChallenge.code).where(OtpChallenge.ticket_id == receipt_id, OtpChallenge.consumed.is_(False))
    ).scalar_one()


def _ready_receipt(client, headers, payload=None):
    body = create_resource_and_assert(client, '/receipts', payload or RECEIPT, headers, expected_initial_status='Pending')
    rid = body['id']
    assert_status_change(client, f'/receipts/{rid}/status', {'status': 'In Process'}, headers, 200, 'In Process')
    assert_status_change(client, f'/receipts/{rid}/status', {'status': 'Ready to Deliver'}, headers, 200, 'Ready to Deliver')
    return rid


def test_create_assigns_sequential_codes(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    first = create_resource_and_assert(client, '/receipts', RECEIPT, headers)
    second = create_resource_and_assert(client, '/receipts', RECEIPT, headers)
    assert (first['receipt_number'], second['receipt_number']) == ('TD001', 'TD002')
    assert first['progress'] == 20


def test_create_validation(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    resp = client.post('/receipts', json={'customer_name': 'X'}, headers=headers)
    assert resp.status_code == 400
    assert 'mobile' in resp.get_json()['error']['detail']
    resp = client.post('/receipts', json={**RECEIPT, 'is_company_item': True}, headers=headers)
    assert resp.status_code == 400
    resp = client.post('/receipts', json={**RECEIPT, 'estimated_amount': 'lots'}, headers=headers)
    assert resp.status_code == 400


def test_get_includes_history_and_next_steps(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = create_resource_and_assert(client, '/receipts', RECEIPT, headers)['id']
    assert_status_change(client, f'/receipts/{rid}/status', {'status': 'In Process'}, headers, 200)
    body = client.get(f'/receipts/{rid}', headers=headers).get_json()
    assert [h['to_status'] for h in body['history']] == ['Pending', 'In Process']
    assert body['allowed_next'] == ['Not Repaired - Return As It Is', 'Product Ordered', 'Ready to Deliver']
    assert list(body['delivery_recipients']) == ['primary']
    assert client.get('/receipts/999', headers=headers).status_code == 404


def test_invalid_transition_is_400(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = create_resource_and_assert(client, '/receipts', RECEIPT, headers)['id']
    resp = assert_status_change(client, f'/receipts/{rid}/status', {'status': 'Ready to Deliver'}, headers, 400)
    err = resp.get_json()['error']
    assert err['title'] == 'Invalid Transition'
    assert err['detail'] == 'Invalid status transition Pending -> Ready to Deliver'


def test_otp_delivery_flow(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = _ready_receipt(client, headers)

    # Delivered without a code never reaches the table
    resp = client.post(f'/receipts/{rid}/status', json={'status': 'Delivered'}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['title'] == 'Invalid OTP'

    resp = client.post(f'/receipts/{rid}/otp', json={'recipient_type': 'person'}, headers=headers)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['mobile'] == '******3210'
    assert body['recipient_name'] == 'Ramesh Kumar'
    assert 'code' not in body and 'otp' not in body

    code = _latest_code(rid)
    wrong = '000000' if code != '000000' else '111111'
    resp = client.post(f'/receipts/{rid}/otp/verify', json={'otp': wrong}, headers=headers)
    assert resp.status_code == 400

    resp = client.post(f'/receipts/{rid}/otp/verify', json={'otp': code, 'delivery_note': 'Box intact'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['status'] == 'Delivered'
    assert body['delivered_to'] == 'Ramesh Kumar'
    assert body['delivery_note'] == 'Box intact'
    assert body['progress'] == 100

    resp = client.post(f'/receipts/{rid}/otp/verify', json={'otp': code}, headers=headers)
    assert resp.status_code == 400


def _set_live_code(receipt_id: int, code: str) -> None:
    session = get_db()
    session.execute(
        update(OtpChallenge)
        .where(OtpChallenge.ticket_id == receipt_id, OtpChallenge.consumed.is_(False))
        .values(code=code)
    )
    session.commit()


def test_numeric_otp_on_status_route_delivers(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = _ready_receipt(client, headers)
    assert client.post(f'/receipts/{rid}/otp', json={}, headers=headers).status_code == 201
    _set_live_code(rid, '482913')
    resp = client.post(f'/receipts/{rid}/status', json={'status': 'Delivered', 'otp': 111111}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['title'] == 'Invalid OTP'
    resp = client.post(f'/receipts/{rid}/status', json={'status': 'Delivered', 'otp': 482913}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['status'] == 'Delivered'


def test_numeric_otp_keeps_leading_zeros(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = _ready_receipt(client, headers)
    assert client.post(f'/receipts/{rid}/otp', json={}, headers=headers).status_code == 201
    _set_live_code(rid, '004211')
    resp = client.post(f'/receipts/{rid}/otp/verify', json={'otp': 4211}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['status'] == 'Delivered'


def test_custom_recipient_validation(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = _ready_receipt(client, headers)
    resp = client.post(f'/receipts/{rid}/otp', json={'recipient_type': 'custom', 'recipient_name': 'Driver'}, headers=headers)
    assert resp.status_code == 400
    resp = client.post(f'/receipts/{rid}/otp', json={'recipient_type': 'neighbour'}, headers=headers)
    assert resp.status_code == 400
    resp = client.post(f'/receipts/{rid}/otp', json={'recipient_type': 'custom', 'recipient_name': 'Driver',
                                                     'mobile': '9811122233'}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['recipient_type'] == 'custom'


def test_otp_before_ready_is_rejected(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = create_resource_and_assert(client, '/receipts', RECEIPT, headers)['id']
    resp = client.post(f'/receipts/{rid}/otp', json={}, headers=headers)
    assert resp.status_code == 400


def test_delivery_needs_deliver_permission(app_context: Flask):
    client = app_context.test_client()
    manager = jwt_headers(1, TECH_PERMS)
    limited = jwt_headers(2, ['RCPT.READ', 'RCPT.MANAGE'])
    rid = _ready_receipt(client, manager)
    assert client.post(f'/receipts/{rid}/otp', json={}, headers=limited).status_code == 403
    resp = client.post(f'/receipts/{rid}/status', json={'status': 'Delivered', 'otp': '123456'}, headers=limited)
    assert resp.status_code == 403
    deliver_only = jwt_headers(3, ['RCPT.DELIVER'])
    resp = client.post(f'/receipts/{rid}/status', json={'status': 'Not Repaired - Return As It Is'}, headers=deliver_only)
    assert resp.status_code == 403


def test_override_requires_admin_and_refuses_delivered(app_context: Flask):
    client = app_context.test_client()
    tech = jwt_headers(1, TECH_PERMS)
    admin = jwt_headers(9, ['ADMIN.STATUS.OVERRIDE'])
    rid = create_resource_and_assert(client, '/receipts', RECEIPT, tech)['id']
    assert client.post(f'/receipts/{rid}/override-status', json={'status': 'Ready to Deliver'}, headers=tech).status_code == 403
    resp = client.post(f'/receipts/{rid}/override-status', json={'status': 'Ready to Deliver', 'note': 'paper ledger'}, headers=admin)
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'Ready to Deliver'
    resp = client.post(f'/receipts/{rid}/override-status', json={'status': 'Delivered'}, headers=admin)
    assert resp.status_code == 400


def test_payment_reminder_accepted(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    rid = create_resource_and_assert(client, '/receipts', RECEIPT, headers)['id']
    resp = client.post(f'/receipts/{rid}/payment-reminder', json={'due_date': '2026-03-31'}, headers=headers)
    assert resp.status_code == 202


def test_list_filters_sort_and_pagination(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, TECH_PERMS)
    for name in ('Charlie', 'Alpha', 'Bravo'):
        create_resource_and_assert(client, '/receipts', {**RECEIPT, 'customer_name': name}, headers)
    body = client.get('/receipts?sort=-customer_name&limit=2', headers=headers).get_json()
    assert [r['customer_name'] for r in body['data']] == ['Charlie', 'Bravo']
    assert body['pagination'] == {'total': 3, 'limit': 2, 'offset': 0, 'returned': 2}
    body = client.get('/receipts?customer_name=alp', headers=headers).get_json()
    assert [r['customer_name'] for r in body['data']] == ['Alpha']
    body = client.get('/receipts?status=Pending', headers=headers).get_json()
    assert body['pagination']['total'] == 3
    assert client.get('/receipts?status=Lost', headers=headers).status_code == 400
    assert client.get('/receipts?sort=colour', headers=headers).status_code == 400
    assert client.get('/receipts?limit=abc', headers=headers).status_code == 400


@pytest.mark.parametrize('method,url', [
    ('get', '/receipts'),
    ('post', '/receipts'),
    ('get', '/receipts/1'),
])
def test_requires_token(client, method, url):
    resp = getattr(client, method)(url, json={})
    assert resp.status_code == 401
