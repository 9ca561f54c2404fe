from datetime import date, timedelta


def days_ahead(n):
    return (date.today() + timedelta(days=n)).isoformat()


def request_leave(client, start=1, end=2, **extra):
    data = {'start_date': days_ahead(start), 'end_date': days_ahead(end), 'reason': 'Fever'}
    data.update(extra)
    return client.post('/api/leaves', json=data)


def excused_dates(managers, user_id):
    rows = managers['database'].execute_query(
        "SELECT scan_date FROM attendance WHERE user_id = ? AND status = 'excused' ORDER BY scan_date",
        (user_id,)
    )
    return [row['scan_date'] for row in rows]


def test_submit_and_list_leaves(organization, make_student):
    client, _ = make_student()

    response = request_leave(client, 3, 5, type='casual')

    assert response.status_code == 201
    leave = response.get_json()['leave']
    assert leave['status'] == 'pending'
    assert leave['type'] == 'casual'
    assert leave['days'] == 3
    assert leave['organization_id'] == organization['id']

    body = client.get('/api/leaves').get_json()
    assert [l['id'] for l in body['leaves']] == [leave['id']]
    assert body['pending_count'] == 1
    assert client.get('/api/user/leaves/pending').get_json()['count'] == 1


def test_submit_accepts_frontend_field_names(organization, make_student):
    client, _ = make_student()

    response = client.post('/api/user/leaves', json={
        'startDate': f'{days_ahead(1)}T00:00:00.000Z',
        'endDate': f'{days_ahead(1)}T00:00:00.000Z',
        'reason': 'Dentist',
    })

    assert response.status_code == 201
    leave = response.get_json()['leave']
    assert leave['start_date'] == leave['end_date'] == days_ahead(1)
    assert leave['type'] == 'sick'


def test_leave_validation(organization, make_student):
    client, _ = make_student()
    cases = [
        {'start_date': days_ahead(-1), 'end_date': days_ahead(1)},
        {'start_date': days_ahead(3), 'end_date': days_ahead(1)},
        {'start_date': 'next week', 'end_date': days_ahead(1)},
        {'start_date': 5, 'end_date': days_ahead(1)},
        {'end_date': days_ahead(40)},
        {'type': 'vacation'},
        {'reason': '  '},
    ]
    for overrides in cases:
        data = {'start_date': days_ahead(1), 'end_date': days_ahead(2), 'reason': 'Fever'}
        data.update(overrides)
        response = client.post('/api/leaves', json=data)
        assert response.status_code == 400, overrides
        assert response.get_json()['error_type'] == 'validation'


def test_leave_needs_an_organization(make_student):
    client, _ = make_student(organization_code=None)

    response = request_leave(client)

    assert response.status_code == 404


def test_overlapping_leave_is_conflict(organization, make_student):
    client, _ = make_student()
    assert request_leave(client, 1, 3).status_code == 201

    assert request_leave(client, 3, 4).status_code == 409
    assert request_leave(client, 4, 5).status_code == 201


def test_cancel_pending_leave(organization, make_student):
    client, _ = make_student()
    other, _ = make_student()
    leave_id = request_leave(client).get_json()['leave']['id']

    assert other.delete(f'/api/leaves/{leave_id}').status_code == 404
    assert client.delete(f'/api/leaves/{leave_id}').status_code == 200
    assert client.delete(f'/api/leaves/{leave_id}').status_code == 404
    assert client.get('/api/leaves').get_json()['leaves'] == []


def test_approve_marks_days_excused(organization, make_student, admin_client, managers):
    client, user = make_student()
    leave_id = request_leave(client, 1, 3).get_json()['leave']['id']

    # Members cannot review their own requests
    assert client.post(f'/api/leaves/{leave_id}/approve').status_code == 403

    queue = admin_client.get(f"/api/organizations/{organization['id']}/leaves",
                             query_string={'status': 'pending'}).get_json()['leaves']
    assert [l['id'] for l in queue] == [leave_id]

    response = admin_client.post(f'/api/leaves/{leave_id}/approve')

    assert response.status_code == 200
    body = response.get_json()
    assert body['leave']['status'] == 'approved'
    assert body['excused_days'] == 3
    assert excused_dates(managers, user['id']) == [days_ahead(1), days_ahead(2), days_ahead(3)]

    # Reviewed requests can neither be reviewed again nor cancelled
    assert admin_client.post(f'/api/leaves/{leave_id}/reject').status_code == 409
    assert client.delete(f'/api/leaves/{leave_id}').status_code == 404

    titles = [n['title'] for n in client.get('/api/notifications').get_json()['notifications']]
    assert 'Leave approved' in titles
    assert client.get('/api/leaves/pending').get_json()['count'] == 0


def test_approval_keeps_attended_days(organization, make_student, admin_client, generate_qr, managers):
    client, user = make_student()
    qr_code = generate_qr(organization['id'])
    assert client.post('/api/qr/scan', json={'qrData': qr_code['payload']}).status_code == 200
    leave_id = request_leave(client, 0, 1).get_json()['leave']['id']

    body = admin_client.post(f'/api/leaves/{leave_id}/approve').get_json()

    assert body['excused_days'] == 1
    assert excused_dates(managers, user['id']) == [days_ahead(1)]
    today = managers['database'].execute_query(
        "SELECT status FROM attendance WHERE user_id = ? AND scan_date = ?",
        (user['id'], days_ahead(0))
    )
    assert [row['status'] for row in today] == ['present']


def test_reject_leave(organization, make_student, admin_client, managers):
    client, user = make_student()
    leave_id = request_leave(client).get_json()['leave']['id']

    response = admin_client.post(f'/api/leaves/{leave_id}/reject', json={'rejection_reason': 'Exam week'})

    assert response.status_code == 200
    leave = response.get_json()['leave']
    assert leave['status'] == 'rejected'
    assert leave['rejection_reason'] == 'Exam week'
    assert excused_dates(managers, user['id']) == []

    rejected = client.get('/api/leaves', query_string={'status': 'rejected'}).get_json()['leaves']
    assert [l['id'] for l in rejected] == [leave_id]
    assert client.get('/api/leaves', query_string={'status': 'lost'}).status_code == 400


def test_unknown_leave(admin_client):
    assert admin_client.post('/api/leaves/999/approve').status_code == 404
