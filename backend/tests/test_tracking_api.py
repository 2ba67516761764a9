from flask import Flask
from tests.test_lifecycle_helpers import jwt_headers, create_resource_and_assert


def test_public_tracking_receipt(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, ['RCPT.READ', 'RCPT.MANAGE'])
    create_resource_and_assert(client, '/receipts', {'customer_name': 'Ramesh', 'mobile': '9876543210', 'product': 'Fan'}, headers)
    resp = client.get('/track/td001')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['type'] == 'receipt'
    assert body['data']['receipt_number'] == 'TD001'
    assert body['data']['progress'] == 20
    assert body['data']['history'][0]['to_status'] == 'Pending'


def test_public_tracking_service(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, ['SVC.READ', 'SVC.MANAGE'])
    create_resource_and_assert(client, '/service-complaints', {
        'customer_name': 'Sunita', 'mobile': '9123456780', 'product': 'AC', 'issue_description': 'No cooling',
    }, headers)
    body = client.get('/track/TE001').get_json()
    assert body['type'] == 'service'
    assert body['data']['visits'] == []


def test_unknown_codes_are_404(client):
    for code in ('TD999', 'ZZ001', 'hello'):
        resp = client.get(f'/track/{code}')
        assert resp.status_code == 404
        assert resp.get_json()['error']['detail'] == 'Tracking number not found'
