import json
import threading
from datetime import datetime, timedelta

from conftest import STUDENT_PASSWORD

CAMPUS = {'latitude': 28.6139, 'longitude': 77.2090}
FAR_AWAY = {'latitude': 28.7041, 'longitude': 77.1025}


def scan(client, qr_code, organization_id=None, **extra):
    path = f'/api/qr/scan/{organization_id}' if organization_id else '/api/qr/scan'
    return client.post(path, json={'qrData': qr_code['payload'], **extra})


def test_generated_qr_carries_payload_and_image(organization, generate_qr):
    qr_code = generate_qr(organization['id'], event_name='Morning lecture')

    payload = json.loads(qr_code['payload'])
    assert payload['id'] == qr_code['id']
    assert payload['org'] == organization['id']
    assert len(payload['data']) == 32
    assert qr_code['qr_image'].startswith('data:image/png;base64,')
    assert qr_code['status'] == 'active'
    assert qr_code['max_scans'] == 0


def test_validity_defaults_to_organization_setting(organization, generate_qr):
    qr_code = generate_qr(organization['id'])

    valid_from = datetime.fromisoformat(qr_code['valid_from'])
    valid_until = datetime.fromisoformat(qr_code['valid_until'])
    assert valid_until - valid_from == timedelta(minutes=15)


def test_generate_rejects_bad_options(admin_client, organization):
    for options in ({'validity_minutes': 0}, {'validity_hours': 500}, {'max_scans': -1},
                    {'type': 'party'}, {'location': {'latitude': 95, 'longitude': 0}}):
        response = admin_client.post(f"/api/qr/generate/{organization['id']}", json=options)
        assert response.status_code == 400, options


def test_generate_accepts_camel_case_options(organization, generate_qr):
    qr_code = generate_qr(organization['id'], validityHours=2, allowMultipleScans=True, maxScans=3,
                          eventName='Lab')

    valid_from = datetime.fromisoformat(qr_code['valid_from'])
    valid_until = datetime.fromisoformat(qr_code['valid_until'])
    assert valid_until - valid_from == timedelta(hours=2)
    assert qr_code['allow_multiple_scans'] is True
    assert qr_code['max_scans'] == 3
    assert qr_code['event_name'] == 'Lab'

    nested = generate_qr(organization['id'], settings={'maxScans': 7, 'locationRadius': 40})
    assert nested['max_scans'] == 7
    assert nested['location']['radius'] == 40


def test_validity_must_be_at_least_one_minute(admin_client, organization):
    path = f"/api/qr/generate/{organization['id']}"

    assert admin_client.post(path, json={'validity_minutes': 0.01}).status_code == 400
    assert admin_client.post(path, json={'validityHours': 0.01}).status_code == 400
    assert admin_client.post(path, json={'validity_minutes': 1}).status_code == 201


def test_members_cannot_generate_qr_codes(organization, make_student):
    client, _ = make_student()
    response = client.post(f"/api/qr/generate/{organization['id']}", json={})
    assert response.status_code == 403


def test_scan_marks_attendance_and_awards_points(organization, make_student, generate_qr):
    client, user = make_student()
    qr_code = generate_qr(organization['id'], event_name='Morning lecture')

    response = scan(client, qr_code, organization['id'])

    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Attendance marked successfully'
    assert body['attendance']['status'] == 'present'
    assert body['attendance']['user_id'] == user['id']
    assert body['attendance']['qr_code_id'] == qr_code['id']
    # 10 base + 5 on time, plus the first day achievement
    assert body['rewards']['daily_points'] == 15
    assert body['rewards']['points'] == 35
    assert [a['id'] for a in body['rewards']['achievements']] == ['FIRST_DAY']


def test_scan_without_organization_in_path(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    assert scan(client, qr_code).status_code == 200


def test_second_scan_is_rejected(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    assert scan(client, qr_code).status_code == 200
    response = scan(client, qr_code)

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'already_scanned'


def test_multiple_scans_allowed_award_points_once(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'], allow_multiple_scans=True)

    first = scan(client, qr_code).get_json()
    second = scan(client, qr_code)

    assert second.status_code == 200
    assert first['rewards']['points'] == 35
    assert second.get_json()['rewards']['points'] == 0


def test_expired_qr_code(organization, make_student, generate_qr, managers, admin_client):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    past = (datetime.now() - timedelta(minutes=1)).isoformat(timespec='seconds')
    managers['database'].execute_update(
        "UPDATE qr_codes SET valid_until = ? WHERE public_id = ?", (past, qr_code['id'])
    )

    response = scan(client, qr_code)

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'expired'
    assert admin_client.get(f"/api/qr/{qr_code['id']}").get_json()['qr_code']['status'] == 'expired'


def test_qr_code_not_yet_valid(organization, make_student, generate_qr, managers):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    future = (datetime.now() + timedelta(minutes=5)).isoformat(timespec='seconds')
    managers['database'].execute_update(
        "UPDATE qr_codes SET valid_from = ? WHERE public_id = ?", (future, qr_code['id'])
    )

    response = scan(client, qr_code)

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'not_yet_valid'


def test_deactivated_qr_code(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    response = admin_client.post(f"/api/qr/{qr_code['id']}/deactivate")
    assert response.get_json()['qr_code']['status'] == 'revoked'

    response = scan(client, qr_code)
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'revoked'


def test_scan_outside_geofence_is_recorded_as_failed(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'], location=CAMPUS, location_radius=100)

    response = scan(client, qr_code, location=FAR_AWAY)

    assert response.status_code == 400
    body = response.get_json()
    assert body['error_type'] == 'location_mismatch'
    assert body['distance'] > 100
    assert body['allowed_radius'] == 100

    history = admin_client.get(f"/api/qr/{qr_code['id']}/history").get_json()
    assert [entry['status'] for entry in history['scan_history']] == ['failed']

    # A failed attempt does not count as a previous scan
    nearby = {'latitude': 28.6140, 'longitude': 77.2091}
    response = scan(client, qr_code, location=nearby)
    assert response.status_code == 200
    assert response.get_json()['attendance']['distance_m'] < 100


def test_geojson_location_is_accepted(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'], location=CAMPUS)

    response = scan(client, qr_code, location={'coordinates': [77.2090, 28.6139]})

    assert response.status_code == 200


def test_invalid_location(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    response = scan(client, qr_code, location={'latitude': 120, 'longitude': 0})

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_location'


def test_already_scanned_wins_over_bad_location(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    assert scan(client, qr_code).status_code == 200

    response = scan(client, qr_code, location={'latitude': 'north', 'longitude': 0})

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'already_scanned'


def test_location_required(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'], require_location=True, location=CAMPUS)

    response = scan(client, qr_code)

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'location_required'


def test_scan_limit(organization, make_student, generate_qr):
    first, _ = make_student()
    second, _ = make_student()
    qr_code = generate_qr(organization['id'], max_scans=1)

    assert scan(first, qr_code).status_code == 200
    response = scan(second, qr_code)

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'scan_limit_reached'


def scan_concurrently(clients, qr_code):
    barrier = threading.Barrier(len(clients))
    statuses = []
    lock = threading.Lock()

    def worker(client):
        barrier.wait()
        response = scan(client, qr_code)
        with lock:
            statuses.append((response.status_code, response.get_json().get('error_type')))

    threads = [threading.Thread(target=worker, args=(client,)) for client in clients]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return statuses


def test_scan_limit_holds_under_concurrent_scans(organization, make_student, generate_qr, admin_client):
    clients = [make_student()[0] for _ in range(6)]
    qr_code = generate_qr(organization['id'], max_scans=3)

    statuses = scan_concurrently(clients, qr_code)

    assert [status for status, _ in statuses].count(200) == 3
    assert sorted(error for status, error in statuses if status != 200) == ['scan_limit_reached'] * 3
    details = admin_client.get(f"/api/qr/{qr_code['public_id']}").get_json()['qr_code']
    assert details['scan_count'] == 3


def test_one_scan_per_user_under_concurrent_scans(organization, make_student, generate_qr, managers, app):
    _, user = make_student()
    clients = []
    for _ in range(6):
        client = app.test_client()
        response = client.post('/api/auth/login', json={'email': user['email'], 'password': STUDENT_PASSWORD})
        assert response.status_code == 200
        clients.append(client)
    qr_code = generate_qr(organization['id'])

    statuses = scan_concurrently(clients, qr_code)

    assert [status for status, _ in statuses].count(200) == 1
    assert {error for status, error in statuses if status != 200} == {'already_scanned'}
    rows = managers['database'].execute_query(
        "SELECT COUNT(*) AS n FROM attendance WHERE user_id = ? AND status != 'failed'",
        (user['id'],), fetch_all=False
    )
    assert rows['n'] == 1
    assert managers['database'].execute_query(
        "SELECT points FROM users WHERE id = ?", (user['id'],), fetch_all=False
    )['points'] == 35


def test_non_member_cannot_scan(organization, make_student, generate_qr):
    client, _ = make_student(organization_code=None)
    qr_code = generate_qr(organization['id'])

    response = scan(client, qr_code)

    assert response.status_code == 403
    assert response.get_json()['error_type'] == 'not_member'


def test_wrong_organization_in_path(admin_client, organization, make_student, generate_qr):
    other = admin_client.post('/api/organizations', json={'name': 'Other', 'code': 'OTH'}).get_json()
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    response = scan(client, qr_code, other['organization']['id'])

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'wrong_organization'


def test_tampered_and_malformed_payloads(organization, make_student, generate_qr):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])

    tampered = json.loads(qr_code['payload'])
    tampered['data'] = '0' * 32
    response = client.post('/api/qr/scan', json={'qrData': json.dumps(tampered)})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_qr'

    response = client.post('/api/qr/scan', json={'qrData': '{not json'})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_format'

    response = client.post('/api/qr/scan', json={'qrData': json.dumps({'id': 'missing'})})
    assert response.get_json()['error_type'] == 'invalid_qr'

    response = client.post('/api/qr/scan', json={'qrData': json.dumps({'id': 'unknown', 'data': 'x'})})
    assert response.status_code == 404

    assert client.post('/api/qr/scan', json={}).status_code == 400


def test_late_arrival_notifies_managers(organization, make_student, generate_qr, managers, admin_client):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    started = (datetime.now() - timedelta(minutes=20)).isoformat(timespec='seconds')
    managers['database'].execute_update(
        "UPDATE qr_codes SET valid_from = ? WHERE public_id = ?", (started, qr_code['id'])
    )

    response = scan(client, qr_code)

    assert response.get_json()['attendance']['status'] == 'late'
    assert response.get_json()['rewards']['daily_points'] == 10
    notifications = admin_client.get('/api/notifications').get_json()['notifications']
    assert any(n['type'] == 'late_arrival' for n in notifications)


def test_qr_listing_and_counts(organization, make_student, generate_qr, admin_client):
    client, _ = make_student()
    qr_code = generate_qr(organization['id'])
    scan(client, qr_code)

    listed = admin_client.get('/api/qr').get_json()['qr_codes']
    assert [q['id'] for q in listed] == [qr_code['id']]
    assert listed[0]['scan_count'] == 1
    assert listed[0]['unique_scans'] == 1
    assert 'payload' not in listed[0]

    by_org = admin_client.get(f"/api/organizations/{organization['id']}/qr-codes").get_json()
    assert len(by_org['qr_codes']) == 1

    member_view = client.get(f"/api/qr/{qr_code['id']}").get_json()['qr_code']
    assert 'payload' not in member_view
    assert client.get('/api/qr').get_json()['qr_codes'] == []


def test_printable_pdf(organization, generate_qr, admin_client):
    generate_qr(organization['id'], event_name='Lab')

    response = admin_client.post(f"/api/qr/pdf/{organization['id']}", json={})

    assert response.status_code == 200
    assert response.mimetype == 'application/pdf'
    assert response.data.startswith(b'%PDF')
