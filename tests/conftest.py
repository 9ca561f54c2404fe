import itertools

import pytest

from app import create_app

ADMIN_EMAIL = 'admin@test.local'
ADMIN_PASSWORD = 'Admin123'
STUDENT_PASSWORD = 'Student1'

_sequence = itertools.count(1)


def student_payload(**overrides):
    n = next(_sequence)
    data = {
        'full_name': f'Student {n}',
        'email': f'student{n}@test.local',
        'password': STUDENT_PASSWORD,
        'phone': f'98{n:08d}',
        'student_id': f'S{n:04d}',
        'course': 'B.Tech',
        'semester': 3,
    }
    data.update(overrides)
    return data


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', {
        'DATABASE_PATH': str(tmp_path / 'test.db'),
        'REPORTS_FOLDER': str(tmp_path / 'exports'),
        'SEED_DEFAULT_DATA': True,
        'DEFAULT_ADMIN_EMAIL': ADMIN_EMAIL,
        'DEFAULT_ADMIN_PASSWORD': ADMIN_PASSWORD,
    })
    yield app
    app.extensions['qrattend']['database'].close_all_connections()


@pytest.fixture
def managers(app):
    return app.extensions['qrattend']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    response = client.post('/api/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture
def organization(admin_client):
    response = admin_client.post('/api/organizations', json={'name': 'Test College', 'code': 'tst'})
    assert response.status_code == 201
    return response.get_json()['organization']


@pytest.fixture
def make_student(app):
    """Register a student in its own client; returns (client, user)."""
    def _make_student(organization_code='TST', **overrides):
        client = app.test_client()
        data = student_payload(**overrides)
        if organization_code:
            data['organization_code'] = organization_code
        response = client.post('/api/auth/register', json=data)
        assert response.status_code == 201, response.get_json()
        return client, response.get_json()['user']
    return _make_student


@pytest.fixture
def generate_qr(admin_client):
    def _generate_qr(organization_id, **options):
        response = admin_client.post(f'/api/qr/generate/{organization_id}', json=options)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['qr_code']
    return _generate_qr


@pytest.fixture
def student_data():
    return student_payload
