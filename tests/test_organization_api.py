def test_only_admins_create_organizations(organization, make_student):
    client, _ = make_student()
    response = client.post('/api/organizations', json={'name': 'Mine', 'code': 'MINE'})
    assert response.status_code == 403


def test_created_organization_has_defaults_and_owner(organization, admin_client):
    assert organization['code'] == 'TST'
    assert organization['settings']['location_radius'] == 100
    assert organization['settings']['qr_validity_minutes'] == 15
    assert organization['settings']['max_scans'] == 0
    assert organization['settings']['allow_multiple_scans'] is False

    members = admin_client.get(f"/api/organizations/{organization['id']}/members").get_json()['members']
    assert [m['role'] for m in members] == ['owner']


def test_duplicate_code_is_conflict(organization, admin_client):
    response = admin_client.post('/api/organizations', json={'name': 'Again', 'code': 'Tst'})
    assert response.status_code == 409


def test_public_list_needs_no_login(organization, client):
    response = client.get('/api/organizations/public')
    assert response.status_code == 200
    assert response.get_json()['organizations'] == [
        {'id': organization['id'], 'name': 'Test College', 'code': 'TST'}
    ]


def test_active_organization_defaults_to_first_membership(organization, make_student):
    client, _ = make_student()

    response = client.get('/api/organization')

    assert response.status_code == 200
    assert response.get_json()['organization']['id'] == organization['id']
    assert response.get_json()['organization']['my_role'] == 'member'


def test_active_organization_without_membership(client, student_data):
    client.post('/api/auth/register', json=student_data())
    assert client.get('/api/organization').status_code == 404


def test_update_active_organization_settings(organization, admin_client, make_student):
    student, _ = make_student()
    assert student.put('/api/organization', json={'location_radius': 50}).status_code == 403

    response = admin_client.put('/api/organization', json={'location_radius': -5})
    assert response.status_code == 400

    response = admin_client.put('/api/organization', json={
        'location': {'latitude': 28.6139, 'longitude': 77.2090, 'name': 'Main gate'},
        'location_radius': 250,
        'max_scans': 40,
        'require_location': True,
    })
    assert response.status_code == 200
    settings = response.get_json()['organization']['settings']
    assert settings['location'] == {'name': 'Main gate', 'latitude': 28.6139, 'longitude': 77.2090}
    assert settings['location_radius'] == 250
    assert settings['max_scans'] == 40
    assert settings['require_location'] is True


def test_select_active_organization(organization, admin_client, make_student):
    other = admin_client.post('/api/organizations', json={'name': 'Other', 'code': 'OTH'}).get_json()
    other_id = other['organization']['id']

    assert admin_client.put('/api/organization/active', json={'organization_id': other_id}).status_code == 200
    assert admin_client.get('/api/organization').get_json()['organization']['code'] == 'OTH'

    student, _ = make_student()
    response = student.put('/api/organization/active', json={'organization_id': other_id})
    assert response.status_code == 403


def test_new_qr_codes_follow_organization_settings(organization, admin_client, generate_qr):
    admin_client.put(f"/api/organizations/{organization['id']}", json={
        'settings': {'location': {'latitude': 28.6, 'longitude': 77.2}, 'location_radius': 75,
                     'max_scans': 3, 'qr_validity_minutes': 30}
    })

    qr_code = generate_qr(organization['id'])

    assert qr_code['location']['latitude'] == 28.6
    assert qr_code['location']['radius'] == 75
    assert qr_code['max_scans'] == 3


def test_join_by_code(organization, make_student):
    client, _ = make_student(organization_code=None)

    response = client.post('/api/organizations/join', json={'code': 'tst'})
    assert response.status_code == 201

    response = client.post('/api/organizations/join', json={'code': 'TST'})
    assert response.status_code == 409

    assert client.post('/api/organizations/join', json={'code': 'NOPE'}).status_code == 404
    assert client.post('/api/organizations/join', json={'code': 5}).status_code == 404
    assert client.post('/api/organizations/join', json=['TST']).status_code == 400


def test_member_management(organization, admin_client, make_student):
    org_id = organization['id']
    client, user = make_student(organization_code=None)

    response = admin_client.post(f'/api/organizations/{org_id}/members',
                                 json={'email': user['email'], 'role': 'admin'})
    assert response.status_code == 201

    # Organization admins can manage the organization
    assert client.get(f'/api/organizations/{org_id}/attendance').status_code == 200

    response = admin_client.put(f"/api/organizations/{org_id}/members/{user['id']}", json={'role': 'member'})
    assert response.status_code == 200
    assert client.get(f'/api/organizations/{org_id}/attendance').status_code == 403

    assert admin_client.delete(f"/api/organizations/{org_id}/members/{user['id']}").status_code == 200
    assert client.get(f'/api/organizations/{org_id}').status_code == 403


def test_last_owner_cannot_be_removed(organization, admin_client):
    members = admin_client.get(f"/api/organizations/{organization['id']}/members").get_json()['members']
    owner_id = members[0]['user_id']

    response = admin_client.delete(f"/api/organizations/{organization['id']}/members/{owner_id}")
    assert response.status_code == 400

    response = admin_client.put(f"/api/organizations/{organization['id']}/members/{owner_id}",
                                json={'role': 'member'})
    assert response.status_code == 400


def test_unknown_organization(admin_client):
    assert admin_client.get('/api/organizations/999').status_code == 404
    assert admin_client.post('/api/qr/generate/999', json={}).status_code == 404


def test_qr_code_status_filter(organization, admin_client, generate_qr):
    generate_qr(organization['id'])
    path = f"/api/organizations/{organization['id']}/qr-codes"

    assert len(admin_client.get(path, query_string={'status': 'active'}).get_json()['qr_codes']) == 1
    assert admin_client.get(path, query_string={'status': 'revoked'}).get_json()['qr_codes'] == []
    assert admin_client.get(path, query_string={'status': 'paused'}).status_code == 400
    assert admin_client.get('/api/qr', query_string={'status': 'paused'}).status_code == 400


def test_malformed_organization_fields(organization, admin_client):
    response = admin_client.post('/api/organizations', json={'name': 'Other', 'code': 'OTH', 'settings': [1]})
    assert response.status_code == 400

    response = admin_client.put(f"/api/organizations/{organization['id']}", json={'settings': 'wide'})
    assert response.status_code == 400

    response = admin_client.post(f"/api/organizations/{organization['id']}/members", json={'email': 5})
    assert response.status_code == 404
