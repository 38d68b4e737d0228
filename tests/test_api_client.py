import json

import pytest
import requests

from mentalspace.client.api import SecureApiClient
from mentalspace.client.session import SessionContext
from mentalspace.errors import (
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    ServerError,
    ValidationError,
)

BASE = 'http://api.test/api'
SECURE_HEADERS = {
    'Strict-Transport-Security': 'max-age=31536000',
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
}


@pytest.fixture
def session_ctx(storage, clock):
    return SessionContext(storage, clock)


@pytest.fixture
def client(session_ctx, audit, encryptor):
    return SecureApiClient(session_ctx, audit, encryptor, base_url=BASE, client_version='2.3.4')


def test_request_headers(client, session_ctx, requests_mock):
    session_ctx.set_token('jwt-123')
    requests_mock.get(f'{BASE}/dashboard', json={'success': True, 'data': {'ok': True}}, headers=SECURE_HEADERS)

    assert client.get('/dashboard') == {'ok': True}

    sent = requests_mock.last_request.headers
    assert sent['Authorization'] == 'Bearer jwt-123'
    assert sent['X-Client-Version'] == '2.3.4'
    assert sent['X-Requested-With'] == 'XMLHttpRequest'
    assert sent['X-Request-Timestamp'].endswith('Z')
    assert len(sent['X-Request-ID']) == 32


def test_request_ids_are_unique(client, requests_mock):
    requests_mock.get(f'{BASE}/dashboard', json={'data': None}, headers=SECURE_HEADERS)
    client.get('/dashboard')
    client.get('/dashboard')
    first, second = (req.headers['X-Request-ID'] for req in requests_mock.request_history)
    assert first != second


def test_no_authorization_header_without_token(client, requests_mock):
    requests_mock.get(f'{BASE}/dashboard', json={'data': []}, headers=SECURE_HEADERS)
    client.get('/dashboard')
    assert 'Authorization' not in requests_mock.last_request.headers


def test_login_body_is_encrypted_and_audited_redacted(client, session_ctx, encryptor, transport, requests_mock):
    requests_mock.post(
        f'{BASE}/auth/login',
        json={'success': True, 'token': 'new-token', 'data': {'id': 1}},
        headers=SECURE_HEADERS,
    )

    assert client.login('doc@example.com', 'hunter22') == {'id': 1}
    assert session_ctx.token == 'new-token'

    body = requests_mock.last_request.json()
    assert list(body) == ['encryptedData']
    assert encryptor.decrypt_to_object(body['encryptedData']) == {
        'email': 'doc@example.com',
        'password': 'hunter22',
    }

    request_event = transport.sent[0]
    assert request_event['action'] == 'API_REQUEST'
    assert json.loads(request_event['newValue']) == {'email': 'doc@example.com', 'password': '[REDACTED]'}
    assert 'hunter22' not in json.dumps(transport.sent)
    assert transport.actions()[-1] == 'API_RESPONSE'


def test_notes_body_is_audited_but_not_wrapped(client, transport, requests_mock):
    requests_mock.put(f'{BASE}/notes/9/draft', json={'data': {'id': '9'}}, headers=SECURE_HEADERS)

    client.put('/notes/9/draft', {'structuredContent': 'ciphertext', 'diagnosis': 'F41.1'})

    assert requests_mock.last_request.json() == {'structuredContent': 'ciphertext', 'diagnosis': 'F41.1'}
    logged = json.loads(transport.sent[0]['newValue'])
    assert logged['diagnosis'] == '[REDACTED]'


def test_non_sensitive_requests_are_not_audited(client, transport, requests_mock):
    requests_mock.post(f'{BASE}/appointments', json={'data': {}}, headers=SECURE_HEADERS)
    client.post('/appointments', {'when': 'tomorrow'})
    assert transport.sent == []


def test_unauthorized_clears_token_and_redirects(client, session_ctx, transport, requests_mock):
    session_ctx.set_token('stale')
    requests_mock.get(f'{BASE}/clients/1', status_code=401, json={'success': False, 'message': 'Invalid or expired token'})

    with pytest.raises(AuthenticationError) as excinfo:
        client.get('/clients/1')

    assert excinfo.value.redirect_to == '/login?session=expired'
    assert excinfo.value.message == 'Invalid or expired token'
    assert session_ctx.token is None
    assert transport.actions() == ['AUTHENTICATION_FAILURE']


def test_forbidden_is_audited(client, transport, requests_mock):
    requests_mock.get(f'{BASE}/auditlogs', status_code=403, json={'success': False, 'message': 'Insufficient privileges'})

    with pytest.raises(AuthorizationError) as excinfo:
        client.get('/auditlogs')

    assert excinfo.value.redirect_to == '/unauthorized'
    payload = transport.sent[-1]
    assert payload['action'] == 'AUTHORIZATION_FAILURE'
    assert payload['description'] == 'User attempted to access forbidden resource: /api/auditlogs'


def test_server_error_is_audited_as_critical(client, transport, requests_mock):
    requests_mock.get(f'{BASE}/notes', status_code=503, text='upstream down')

    with pytest.raises(ServerError) as excinfo:
        client.get('/notes')

    assert excinfo.value.status_code == 503
    assert 'try again' in excinfo.value.message
    payload = transport.sent[-1]
    assert payload['action'] == 'SERVER_ERROR'
    assert payload['severity'] == 'critical'
    assert payload['entityId'] == '/api/notes'


def test_not_found_and_validation_errors(client, requests_mock):
    requests_mock.get(f'{BASE}/notes/x', status_code=404, json={'success': False, 'message': 'Note not found'})
    requests_mock.post(f'{BASE}/notes', status_code=422, json={'success': False, 'error': {'message': 'bad body'}})

    with pytest.raises(NotFoundError) as not_found:
        client.get('/notes/x')
    assert not_found.value.message == 'Note not found'

    with pytest.raises(ValidationError) as invalid:
        client.post('/notes', {})
    assert invalid.value.message == 'bad body'


def test_transport_failure_maps_to_network_error(client, requests_mock):
    requests_mock.get(f'{BASE}/dashboard', exc=requests.exceptions.ConnectTimeout)

    with pytest.raises(NetworkError):
        client.get('/dashboard')


def test_missing_security_headers_are_tolerated(client, requests_mock):
    requests_mock.get(f'{BASE}/dashboard', json={'data': 5})
    assert client.get('/dashboard') == 5


def test_unwrap_disabled_returns_full_body(client, requests_mock):
    requests_mock.get(f'{BASE}/clients', json={'success': True, 'data': [], 'total': 0}, headers=SECURE_HEADERS)
    assert client.get('/clients', unwrap=False) == {'success': True, 'data': [], 'total': 0}


def test_none_params_are_dropped(client, requests_mock):
    requests_mock.get(f'{BASE}/notes', json={'data': []}, headers=SECURE_HEADERS)
    client.get('/notes', params={'client_id': 'c1', 'note_type': None})
    assert requests_mock.last_request.qs == {'client_id': ['c1']}
