import pytest

from mentalspace.client.api import SecureApiClient
from mentalspace.client.clients import ClientRecordsService
from mentalspace.client.session import SessionContext
from mentalspace.errors import AuthorizationError, NotFoundError

BASE = 'http://api.test/api'


@pytest.fixture
def records(storage, audit, encryptor, clock):
    session_ctx = SessionContext(storage, clock)
    session_ctx.set_token('jwt')
    api = SecureApiClient(session_ctx, audit, encryptor, base_url=BASE)
    return ClientRecordsService(api, audit, encryptor)


def test_create_encrypts_contact_fields(records, encryptor, transport, requests_mock):
    def _echo(request, context):
        context.status_code = 201
        return {'success': True, 'data': {'id': 'c-1', **request.json()}}

    requests_mock.post(f'{BASE}/clients', json=_echo)

    created = records.create_client(
        {'first_name': 'John', 'last_name': 'Doe', 'date_of_birth': '1990-04-12', 'phone': '555-0100', 'email': None}
    )

    sent = requests_mock.last_request.json()
    assert sent['first_name'] == 'John'
    assert sent['phone'] != '555-0100'
    assert encryptor.decrypt(sent['phone']) == '555-0100'
    assert sent['email'] is None
    assert created['phone'] == '555-0100'
    assert created['id'] == 'c-1'

    event = transport.sent[0]
    assert event['action'] == 'CREATE_CLIENT'
    assert event['module'] == 'client'
    assert 'John' not in event['description']


def test_get_client_decrypts_and_audits(records, encryptor, transport, requests_mock):
    requests_mock.get(
        f'{BASE}/clients/c-7',
        json={'success': True, 'data': {'id': 'c-7', 'email': encryptor.encrypt('a@b.test'), 'city': 'Reno'}},
    )

    record = records.get_client('c-7')

    assert record == {'id': 'c-7', 'email': 'a@b.test', 'city': 'Reno'}
    assert transport.sent[0]['action'] == 'VIEW_CLIENT'
    assert transport.sent[0]['entityId'] == 'c-7'
    assert transport.sent[0]['entityType'] == 'client'


def test_plaintext_fields_are_returned_unchanged(records, requests_mock):
    requests_mock.get(
        f'{BASE}/clients',
        json={'success': True, 'data': [{'id': 'c-1', 'phone': '555-0199'}], 'total': 1},
    )

    assert records.get_clients(q='doe') == [{'id': 'c-1', 'phone': '555-0199'}]
    assert requests_mock.last_request.qs == {'q': ['doe']}


def test_update_sends_encrypted_envelope(records, encryptor, transport, requests_mock):
    requests_mock.put(f'{BASE}/clients/c-2', json={'success': True, 'data': {'id': 'c-2', 'risk_flag': 'HIGH'}})

    records.update_client('c-2', {'address_line1': '1 Main St', 'risk_flag': 'HIGH'})

    body = encryptor.decrypt_to_object(requests_mock.last_request.json()['encryptedData'])
    assert body['risk_flag'] == 'HIGH'
    assert encryptor.decrypt(body['address_line1']) == '1 Main St'
    update_event = transport.sent[0]
    assert update_event['action'] == 'UPDATE_CLIENT'
    assert update_event['newValue'] == 'address_line1,risk_flag'


def test_failed_lookup_is_reported_and_reraised(records, transport, requests_mock):
    requests_mock.get(f'{BASE}/clients/missing', status_code=404, json={'message': 'Client not found'})

    with pytest.raises(NotFoundError):
        records.get_client('missing')

    assert transport.actions() == ['VIEW_CLIENT', 'VIEW_CLIENT_ERROR']
    assert transport.sent[-1]['description'] == 'Error retrieving client: Client not found'
    assert transport.sent[-1]['severity'] == 'warning'


def test_deactivate_client(records, encryptor, transport, requests_mock):
    requests_mock.put(f'{BASE}/clients/c-3', status_code=403, json={'message': 'Insufficient privileges'})

    with pytest.raises(AuthorizationError):
        records.deactivate_client('c-3', reason='moved away')

    body = encryptor.decrypt_to_object(requests_mock.last_request.json()['encryptedData'])
    assert body == {'status': 'INACTIVE'}
    assert transport.sent[0]['description'] == 'User deactivated a client record: moved away'
    assert transport.actions()[-1] == 'DEACTIVATE_CLIENT_ERROR'
