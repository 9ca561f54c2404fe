from app import create_app
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def test_register_logs_in_and_joins_organization(organization, make_student):
    client, user = make_student()

    assert user['role'] == 'student'
    assert 'password_hash' not in user

    response = client.get('/api/auth/me')
    assert response.status_code == 200
    body = response.get_json()
    assert body['user']['email'] == user['email']
    assert 'scan_qr_codes' in body['user']['permissions']
    assert [org['code'] for org in body['organizations']] == ['TST']


def test_register_duplicate_email_is_conflict(client, student_data):
    data = student_data()
    assert client.post('/api/auth/register', json=data).status_code == 201

    again = student_data(email=data['email'].upper())
    response = client.post('/api/auth/register', json=again)

    assert response.status_code == 409
    assert response.get_json()['field'] == 'email'


def test_register_duplicate_phone_is_conflict(client, student_data):
    data = student_data(phone='(987) 654-3210')
    assert client.post('/api/auth/register', json=data).status_code == 201

    response = client.post('/api/auth/register', json=student_data(phone='9876543210'))

    assert response.status_code == 409
    assert response.get_json()['field'] == 'phone'


def test_register_duplicate_student_id_in_organization(organization, client, student_data):
    first = student_data(student_id='CS-01', organization_code='TST')
    assert client.post('/api/auth/register', json=first).status_code == 201

    response = client.post('/api/auth/register',
                           json=student_data(student_id='CS-01', organization_code='TST'))

    assert response.status_code == 409
    assert response.get_json()['field'] == 'student_id'


def test_register_validation(client, student_data):
    cases = [
        (student_data(password='weakpass'), 'password'),
        (student_data(phone='12345'), 'phone'),
        (student_data(email='not-an-email'), 'email'),
        (student_data(course=''), 'course'),
        (student_data(role='admin'), 'role'),
    ]
    for data, field in cases:
        response = client.post('/api/auth/register', json=data)
        assert response.status_code == 400
        assert response.get_json()['field'] == field


def test_register_rejects_non_text_fields(client, student_data):
    for field, value in (('email', 5), ('password', ['Student1']), ('full_name', {'first': 'A'})):
        response = client.post('/api/auth/register', json=student_data(**{field: value}))
        assert response.status_code == 400
        assert response.get_json()['field'] == field


def test_register_unknown_organization_code(client, student_data):
    response = client.post('/api/auth/register', json=student_data(organization_code='NOPE'))
    assert response.status_code == 404


def test_members_do_not_need_student_fields(client, student_data):
    data = student_data(role='member', student_id=None, course=None, semester=None)
    response = client.post('/api/auth/register', json=data)
    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'member'


def test_login_and_logout(client):
    response = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'admin'

    assert client.post('/api/auth/logout').status_code == 200
    assert client.get('/api/auth/me').status_code == 401


def test_login_wrong_password(client):
    response = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': 'Wrong123'})
    assert response.status_code == 401
    assert response.get_json()['error_type'] == 'invalid_credentials'


def test_login_with_malformed_body(client):
    response = client.post('/api/auth/login', json={'email': 5, 'password': 'Wrong123'})
    assert response.status_code == 401
    assert response.get_json()['error_type'] == 'invalid_credentials'

    response = client.post('/api/auth/login', json=[1])
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'validation'

    response = client.post('/api/auth/register', json=[1])
    assert response.status_code == 400


def test_account_locks_after_five_failures(client):
    for _ in range(5):
        client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': 'Wrong123'})

    response = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})

    assert response.status_code == 401
    body = response.get_json()
    assert body['error_type'] == 'account_locked'
    assert 'minutes' in body['error']


def test_protected_routes_require_login(client):
    for path in ('/api/auth/me', '/api/attendance/history', '/api/rewards', '/api/notifications'):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json()['success'] is False


def test_profile_update_and_password_change(organization, make_student):
    client, user = make_student()

    response = client.put('/api/auth/profile', json={'department': 'Physics', 'email': 'x@y.z'})
    assert response.status_code == 200
    assert response.get_json()['user']['department'] == 'Physics'
    assert response.get_json()['user']['email'] == user['email']

    response = client.post('/api/auth/change-password',
                           json={'current_password': 'Wrong123', 'new_password': 'NewPass1'})
    assert response.status_code == 400

    response = client.post('/api/auth/change-password',
                           json={'current_password': 'Student1', 'new_password': 'NewPass1'})
    assert response.status_code == 200

    client.post('/api/auth/logout')
    response = client.post('/api/auth/login', json={'email': user['email'], 'password': 'NewPass1'})
    assert response.status_code == 200


def test_check_email(client):
    response = client.get('/api/auth/check-email', query_string={'email': ADMIN_EMAIL})
    assert response.get_json()['exists'] is True

    response = client.get('/api/auth/check-email', query_string={'email': 'nobody@test.local'})
    assert response.get_json()['exists'] is False

    assert client.get('/api/auth/check-email').status_code == 400


def test_login_is_rate_limited(tmp_path):
    app = create_app('testing', {
        'DATABASE_PATH': str(tmp_path / 'limited.db'),
        'REPORTS_FOLDER': str(tmp_path / 'exports'),
        'RATELIMIT_ENABLED': True,
        'AUTH_RATE_LIMIT': '3 per minute',
    })
    client = app.test_client()

    statuses = [
        client.post('/api/auth/login', json={'email': 'a@b.co', 'password': 'Wrong123'}).status_code
        for _ in range(4)
    ]

    assert statuses == [401, 401, 401, 429]
    response = client.post('/api/auth/login', json={'email': 'a@b.co', 'password': 'Wrong123'})
    assert response.get_json()['error_type'] == 'rate_limited'
    app.extensions['qrattend']['database'].close_all_connections()
