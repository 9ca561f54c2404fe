from conftest import ADMIN_EMAIL


def test_scan_confirmation_and_read_flow(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    client.post('/api/qr/scan', json={'qrData': qr_code['payload']})

    body = client.get('/api/notifications').get_json()
    assert body['unread_count'] >= 1
    first = body['notifications'][0]
    assert first['title'] == 'Attendance Recorded'
    assert first['is_read'] is False

    assert client.post(f"/api/notifications/{first['id']}/read").status_code == 200
    assert client.post('/api/notifications/999/read').status_code == 404

    client.post('/api/notifications/read-all')
    body = client.get('/api/notifications', query_string={'unread_only': 'true'}).get_json()
    assert body['unread_count'] == 0
    assert body['notifications'] == []


def test_notifications_are_private(organization, make_student, generate_qr):
    client, _ = make_student()
    other, _ = make_student()
    qr_code = generate_qr(organization['id'])
    client.post('/api/qr/scan', json={'qrData': qr_code['payload']})

    note_id = client.get('/api/notifications').get_json()['notifications'][0]['id']

    assert other.get('/api/notifications').get_json()['notifications'] == []
    assert other.post(f'/api/notifications/{note_id}/read').status_code == 404


def test_organization_broadcast(organization, admin_client, make_student):
    first, _ = make_student()
    make_student()
    path = f"/api/organizations/{organization['id']}/notify"

    response = admin_client.post(path, json={'title': 'Holiday', 'message': 'Closed on Friday'})
    assert response.status_code == 201
    assert response.get_json()['sent'] == 2

    titles = [n['title'] for n in first.get('/api/notifications').get_json()['notifications']]
    assert titles == ['Holiday']

    assert admin_client.post(path, json={'title': 'Empty'}).status_code == 400
    assert first.post(path, json={'title': 'x', 'message': 'y'}).status_code == 403


def test_system_settings(admin_client, make_student, organization):
    student, _ = make_student()
    assert student.get('/api/admin/settings').status_code == 403

    settings = admin_client.get('/api/admin/settings').get_json()['settings']
    assert {'system_name', 'late_threshold_minutes'} <= {s['setting_key'] for s in settings}

    response = admin_client.put('/api/admin/settings', json={'system_name': 'Campus Check-in', 'new_key': 5})
    assert response.status_code == 200
    values = {s['setting_key']: s['setting_value'] for s in response.get_json()['settings']}
    assert values['system_name'] == 'Campus Check-in'
    assert values['new_key'] == '5'

    assert admin_client.put('/api/admin/settings', json={}).status_code == 400


def test_user_administration(admin_client, make_student, organization):
    student, user = make_student()

    users = admin_client.get('/api/admin/users').get_json()['users']
    assert {u['email'] for u in users} == {ADMIN_EMAIL, user['email']}

    admin_id = next(u['id'] for u in users if u['email'] == ADMIN_EMAIL)
    assert admin_client.post(f'/api/admin/users/{admin_id}/deactivate').status_code == 400
    assert admin_client.post('/api/admin/users/999/deactivate').status_code == 404

    assert admin_client.post(f"/api/admin/users/{user['id']}/deactivate").status_code == 200

    # Deactivated users lose their session
    assert student.get('/api/auth/me').status_code == 401
    assert len(admin_client.get('/api/admin/users').get_json()['users']) == 1
    assert len(admin_client.get('/api/admin/users', query_string={'include_inactive': 'true'})
               .get_json()['users']) == 2


def test_health_and_unknown_routes(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'database': 'ok'}

    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json()['success'] is False
