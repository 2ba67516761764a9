from flask import Flask
from tests.test_lifecycle_helpers import jwt_headers, create_resource_and_assert, assert_status_change

SVC_PERMS = ['SVC.READ', 'SVC.MANAGE']

COMPLAINT = {
    'customer_name': 'Sunita Rao',
    'mobile': '9123456780',
    'address': '12 MG Road',
    'product': 'Washing Machine',
    'model': 'Samsung WA70',
    'issue_description': 'Drum not spinning',
}


def test_service_complaint_lifecycle(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, SVC_PERMS)
    c = create_resource_and_assert(client, '/service-complaints', COMPLAINT, headers, expected_initial_status='Pending')
    assert c['complaint_number'] == 'TE001'
    assert c['priority'] == 'Normal'
    cid = c['id']
    assert_status_change(client, f'/service-complaints/{cid}/status', {'status': 'Completed'}, headers, 400)
    resp = assert_status_change(client, f'/service-complaints/{cid}/status',
                                {'status': 'Assigned', 'assigned_engineer_id': 7}, headers, 200, 'Assigned')
    assert resp.get_json()['assigned_engineer_id'] == 7
    assert_status_change(client, f'/service-complaints/{cid}/status', {'status': 'In Progress'}, headers, 200, 'In Progress')
    resp = assert_status_change(client, f'/service-complaints/{cid}/status', {'status': 'Completed'}, headers, 200, 'Completed')
    body = resp.get_json()
    assert body['completed_at'] is not None
    assert body['progress'] == 100
    assert_status_change(client, f'/service-complaints/{cid}/status', {'status': 'Cancelled'}, headers, 400)


def test_create_validation(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, SVC_PERMS)
    resp = client.post('/service-complaints', json={'customer_name': 'X', 'mobile': '1', 'product': 'AC'}, headers=headers)
    assert resp.status_code == 400
    resp = client.post('/service-complaints', json={**COMPLAINT, 'priority': 'Whenever'}, headers=headers)
    assert resp.status_code == 400


def test_visits(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(5, SVC_PERMS)
    cid = create_resource_and_assert(client, '/service-complaints', COMPLAINT, headers)['id']
    resp = client.post(f'/service-complaints/{cid}/visits', json={
        'engineer_id': 7,
        'check_in_time': '2026-03-02T10:00:00Z',
        'check_out_time': '2026-03-02T11:30:00Z',
        'work_description': 'Replaced drive belt',
        'parts_issued': 'Belt x1',
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['engineer_id'] == 7
    resp = client.post(f'/service-complaints/{cid}/visits', json={
        'check_in_time': '2026-03-02T10:00:00Z', 'check_out_time': '2026-03-02T09:00:00Z',
    }, headers=headers)
    assert resp.status_code == 400
    visits = client.get(f'/service-complaints/{cid}/visits', headers=headers).get_json()['data']
    assert [v['work_description'] for v in visits] == ['Replaced drive belt']
    detail = client.get(f'/service-complaints/{cid}', headers=headers).get_json()
    assert len(detail['visits']) == 1
    assert detail['allowed_next'] == ['Assigned', 'Cancelled']
    # closed complaints take no more visits
    assert_status_change(client, f'/service-complaints/{cid}/status', {'status': 'Cancelled'}, headers, 200)
    resp = client.post(f'/service-complaints/{cid}/visits', json={'work_description': 'late'}, headers=headers)
    assert resp.status_code == 400


def test_engineer_scope_limits_visibility(app_context: Flask):
    client = app_context.test_client()
    office = jwt_headers(1, SVC_PERMS)
    mine = create_resource_and_assert(client, '/service-complaints', COMPLAINT, office)['id']
    other = create_resource_and_assert(client, '/service-complaints', COMPLAINT, office)['id']
    assert_status_change(client, f'/service-complaints/{mine}/status', {'status': 'Assigned', 'assigned_engineer_id': 7}, office, 200)
    assert_status_change(client, f'/service-complaints/{other}/status', {'status': 'Assigned', 'assigned_engineer_id': 8}, office, 200)
    engineer = jwt_headers(7, SVC_PERMS, engineer_id=7)
    listed = client.get('/service-complaints', headers=engineer).get_json()
    assert [c['id'] for c in listed['data']] == [mine]
    assert client.get(f'/service-complaints/{other}', headers=engineer).status_code == 403
    assert client.get(f'/service-complaints/{mine}', headers=engineer).status_code == 200
    # the office sees both and can filter
    assert client.get('/service-complaints', headers=office).get_json()['pagination']['total'] == 2
    filtered = client.get('/service-complaints?engineer_id=8', headers=office).get_json()
    assert [c['id'] for c in filtered['data']] == [other]


def test_override_status(app_context: Flask):
    client = app_context.test_client()
    office = jwt_headers(1, SVC_PERMS)
    admin = jwt_headers(9, ['ADMIN.STATUS.OVERRIDE'])
    cid = create_resource_and_assert(client, '/service-complaints', COMPLAINT, office)['id']
    resp = client.post(f'/service-complaints/{cid}/override-status', json={'status': 'Completed'}, headers=admin)
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'Completed'
    resp = client.post(f'/service-complaints/{cid}/override-status', json={'status': 'Done'}, headers=admin)
    assert resp.status_code == 400
    assert client.post(f'/service-complaints/{cid}/override-status', json={'status': 'Pending'}, headers=office).status_code == 403


def test_missing_complaint(app_context: Flask):
    client = app_context.test_client()
    headers = jwt_headers(1, SVC_PERMS)
    resp = client.get('/service-complaints/404', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['error']['detail'] == 'Service not found'
