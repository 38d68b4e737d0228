from mentalspace.db.models import AuditLogEntry as AuditLog, User


def test_list_staff_requires_token(api_client, in_memory_db):
    resp = api_client.get('/api/staff')
    assert resp.status_code == 401


def test_list_staff_hides_credentials(api_client, clinician, supervisor):
    resp = api_client.get('/api/staff', headers=clinician['headers'])

    assert resp.status_code == 200
    body = resp.json()
    assert body['total'] == 2
    emails = {row['email'] for row in body['data']}
    assert emails == {clinician['email'], supervisor['email']}
    for row in body['data']:
        assert 'password_hash' not in row
        assert 'failed_login_attempts' not in row


def test_filter_by_role_and_supervisors(api_client, admin, clinician, supervisor):
    resp = api_client.get('/api/staff', params={'role': 'Supervisor'}, headers=clinician['headers'])
    assert [row['id'] for row in resp.json()['data']] == [supervisor['id']]

    resp = api_client.get('/api/staff', params={'can_supervise': 'true'}, headers=clinician['headers'])
    ids = {row['id'] for row in resp.json()['data']}
    assert ids == {admin['id'], supervisor['id']}
    assert all(row['can_supervise'] for row in resp.json()['data'])


def test_unknown_role_is_rejected(api_client, clinician):
    resp = api_client.get('/api/staff', params={'role': 'janitor'}, headers=clinician['headers'])
    assert resp.status_code == 400
    assert resp.json()['message'] == 'Unknown role: janitor'


def test_filter_by_active_status(api_client, in_memory_db, clinician, supervisor):
    session = in_memory_db.make_session()
    session.get(User, supervisor['id']).is_active = False
    session.commit()
    session.close()

    resp = api_client.get('/api/staff', params={'is_active': 'false'}, headers=clinician['headers'])
    assert [row['id'] for row in resp.json()['data']] == [supervisor['id']]

    resp = api_client.get('/api/staff', params={'is_active': 'true'}, headers=clinician['headers'])
    assert [row['id'] for row in resp.json()['data']] == [clinician['id']]


def test_get_staff_member_is_audited(api_client, in_memory_db, clinician, supervisor):
    resp = api_client.get(f"/api/staff/{supervisor['id']}", headers=clinician['headers'])

    assert resp.status_code == 200
    data = resp.json()['data']
    assert data['role'] == 'supervisor'
    assert data['can_supervise'] is True

    session = in_memory_db.make_session()
    entry = session.query(AuditLog).filter_by(action='VIEW_STAFF').one()
    assert entry.entity_id == str(supervisor['id'])
    assert entry.user_id == clinician['id']
    session.close()


def test_get_missing_staff_member(api_client, clinician):
    resp = api_client.get('/api/staff/9999', headers=clinician['headers'])
    assert resp.status_code == 404
    assert resp.json()['message'] == 'Staff not found with id of 9999'
