from datetime import date, timedelta


def check_in(client, generate_qr, organization, **options):
    qr_code = generate_qr(organization['id'], **options)
    response = client.post(f"/api/qr/scan/{organization['id']}", json={'qrData': qr_code['payload']})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['attendance']


def test_history_today_and_stats(organization, make_student, generate_qr):
    client, _ = make_student()
    attendance = check_in(client, generate_qr, organization, event_name='Lecture')

    history = client.get('/api/attendance/history').get_json()['records']
    assert [r['id'] for r in history] == [attendance['id']]
    assert history[0]['organization_name'] == 'Test College'
    assert history[0]['event_name'] == 'Lecture'

    today = client.get('/api/attendance/today').get_json()['records']
    assert len(today) == 1

    stats = client.get('/api/attendance/stats').get_json()['stats']
    assert stats['today_status'] == 'present'
    assert stats['weekly_attendance'] == 1
    assert stats['monthly_attendance'] == 1
    assert stats['current_streak'] == 1
    assert stats['daily_breakdown'][0]['date'] == date.today().isoformat()


def test_stats_without_attendance(organization, make_student):
    client, _ = make_student()

    stats = client.get('/api/attendance/stats').get_json()['stats']

    assert stats['today_status'] == 'absent'
    assert stats['total_days'] == 0
    assert stats['daily_breakdown'] == []


def test_history_date_range(organization, make_student, generate_qr):
    client, _ = make_student()
    check_in(client, generate_qr, organization)
    today = date.today()

    response = client.get('/api/attendance/history', query_string={'start_date': today.isoformat()})
    assert response.status_code == 400

    response = client.get('/api/attendance/history', query_string={
        'start_date': (today - timedelta(days=7)).isoformat(), 'end_date': today.isoformat()
    })
    assert len(response.get_json()['records']) == 1

    response = client.get('/api/attendance/history', query_string={
        'start_date': (today - timedelta(days=7)).isoformat(),
        'end_date': (today - timedelta(days=1)).isoformat()
    })
    assert response.get_json()['records'] == []

    response = client.get('/api/attendance/history', query_string={'start_date': 'x', 'end_date': 'y'})
    assert response.status_code == 400


def test_organization_attendance(organization, make_student, generate_qr, admin_client):
    first, _ = make_student()
    make_student()
    check_in(first, generate_qr, organization)

    body = admin_client.get(f"/api/organizations/{organization['id']}/attendance").get_json()

    assert body['summary']['present'] == 1
    assert body['members_attended'] == 1
    # Owner plus two students
    assert body['member_count'] == 3
    assert body['attendance_rate'] == 33.3

    assert first.get(f"/api/organizations/{organization['id']}/attendance").status_code == 403


def test_manual_status_update(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    attendance = check_in(client, generate_qr, organization)

    response = admin_client.put(f"/api/attendance/{attendance['id']}",
                                json={'status': 'excused', 'notes': 'Doctor visit'})
    assert response.status_code == 200
    assert response.get_json()['attendance']['status'] == 'excused'
    assert response.get_json()['attendance']['notes'] == 'Doctor visit'

    response = admin_client.put(f"/api/attendance/{attendance['id']}", json={'status': 'failed'})
    assert response.status_code == 400

    assert client.put(f"/api/attendance/{attendance['id']}", json={'status': 'present'}).status_code == 403
    assert admin_client.put('/api/attendance/999', json={'status': 'present'}).status_code == 404


def test_organization_analytics(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    check_in(client, generate_qr, organization)

    response = admin_client.get(f"/api/organizations/{organization['id']}/analytics", query_string={'days': 7})

    assert response.status_code == 200
    body = response.get_json()
    assert body['qr_statistics']['total_sessions'] == 1
    assert len(body['recent_activity']) == 1


def test_admin_dashboard(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    check_in(client, generate_qr, organization)

    assert client.get('/api/admin/dashboard').status_code == 403

    response = admin_client.get('/api/admin/dashboard')
    assert response.status_code == 200
    assert response.get_json()['stats']['users']['total'] == 2
