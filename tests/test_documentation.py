import pytest
import requests

from mentalspace.client.api import SecureApiClient
from mentalspace.client.documentation import DocumentationService, build_documentation_service
from mentalspace.client.secure_cache import SecureCache
from mentalspace.client.session import SessionContext
from mentalspace.errors import NetworkError, ServerError
from mentalspace.storage import MemoryStorage

BASE = 'http://api.test/api'


@pytest.fixture
def service(storage, encryptor, audit, clock):
    session_ctx = SessionContext(storage, clock)
    session_ctx.set_token('jwt')
    api = SecureApiClient(session_ctx, audit, encryptor, base_url=BASE)
    return DocumentationService(api, SecureCache(storage, encryptor), audit, session_ctx, encryptor, clock=clock)


def test_offline_draft_is_recoverable(service, storage, transport, requests_mock):
    requests_mock.put(f'{BASE}/notes/123/draft', exc=requests.exceptions.ConnectionError)

    with pytest.raises(NetworkError):
        service.save_draft('123', {'clientName': 'John Doe'})

    assert storage.get_item('note_draft_123') is not None
    assert storage.get_item('note_draft_recovery_123') is not None
    assert 'SAVE_DRAFT' in transport.actions()
    assert 'SAVE_DRAFT_ERROR' in transport.actions()

    assert service.recover_draft('123') == {'clientName': 'John Doe'}
    assert transport.actions()[-1] == 'RECOVER_DRAFT'


def test_recovery_slot_used_when_primary_is_lost(service, storage, requests_mock):
    requests_mock.put(f'{BASE}/notes/123/draft', status_code=500, json={'message': 'db down'})

    with pytest.raises(ServerError):
        service.save_draft('123', {'mood': 'anxious'})

    storage.remove_item('note_draft_123')
    assert service.recover_draft('123') == {'mood': 'anxious'}


def test_successful_draft_save_sends_encrypted_content(service, encryptor, storage, requests_mock):
    requests_mock.put(f'{BASE}/notes/5/draft', json={'success': True, 'data': {'id': '5'}})

    assert service.save_draft('5', {'plan': 'CBT'}) == {'id': '5'}

    sent = requests_mock.last_request.json()['structuredContent']
    assert encryptor.decrypt_to_object(sent) == {'plan': 'CBT'}
    assert storage.get_item('note_draft_5') is not None
    assert storage.get_item('note_draft_recovery_5') is None


def test_recover_missing_draft_returns_none(service, transport):
    assert service.recover_draft('nothing') is None
    assert transport.sent == []


def test_finalize_sends_signature_hash_and_clears_drafts(service, encryptor, storage, requests_mock):
    requests_mock.put(f'{BASE}/notes/7/draft', exc=requests.exceptions.ConnectionError)
    requests_mock.put(f'{BASE}/notes/7/finalize', json={'success': True, 'data': {'status': 'SIGNED'}})
    with pytest.raises(NetworkError):
        service.save_draft('7', {'a': 1})

    assert service.finalize_note('7', 'Dr. Jane Smith') == {'status': 'SIGNED'}

    body = requests_mock.last_request.json()
    assert body['signature'] == encryptor.hash('Dr. Jane Smith')
    assert body['timestamp'] == '2024-01-01T09:00:00Z'
    assert storage.get_item('note_draft_7') is None
    assert storage.get_item('note_draft_recovery_7') is None


def test_failed_finalize_keeps_drafts(service, storage, transport, requests_mock):
    service.drafts('8').write_primary({'a': 1})
    requests_mock.put(f'{BASE}/notes/8/finalize', status_code=409, json={'message': 'Supervision pending'})

    with pytest.raises(Exception):
        service.finalize_note('8', 'sig')

    assert storage.get_item('note_draft_8') is not None
    assert transport.actions()[-1] == 'FINALIZE_NOTE_ERROR'


def test_create_note_encrypts_clinical_types(service, encryptor, requests_mock):
    requests_mock.post(f'{BASE}/notes', json={'success': True, 'data': {'id': 'n1'}})

    service.create_note({'client_id': 'c1', 'note_type': 'PROGRESS', 'structuredContent': {'mood': 'ok'}})
    sent = requests_mock.last_request.json()
    assert encryptor.decrypt_to_object(sent['structuredContent']) == {'mood': 'ok'}

    service.create_note({'client_id': 'c1', 'note_type': 'CONTACT', 'structuredContent': {'call': 'brief'}})
    assert requests_mock.last_request.json()['structuredContent'] == {'call': 'brief'}


def test_delete_note_clears_drafts(service, storage, transport, requests_mock):
    service.drafts('3').write_primary({'a': 1})
    requests_mock.delete(f'{BASE}/notes/3', json={'success': True, 'data': {}})

    service.delete_note('3')

    assert storage.get_item('note_draft_3') is None
    delete_event = [p for p in transport.sent if p['action'] == 'DELETE_NOTE'][0]
    assert delete_event['severity'] == 'warning'


def test_supervision_calls(service, requests_mock):
    requests_mock.put(f'{BASE}/notes/4/submit-for-supervision', json={'data': {'supervision_status': 'PENDING'}})
    requests_mock.put(f'{BASE}/notes/4/reject', json={'data': {'supervision_status': 'REJECTED'}})

    assert service.submit_for_supervision('4', 12) == {'supervision_status': 'PENDING'}
    assert requests_mock.request_history[0].json() == {'supervisorId': 12}
    assert service.reject_note('4', 'needs detail') == {'supervision_status': 'REJECTED'}
    assert requests_mock.last_request.json() == {'comments': 'needs detail'}


def test_template_calls_encrypt_structured_content(service, encryptor, transport, requests_mock):
    requests_mock.post(f'{BASE}/note-templates', json={'data': {'id': 't1'}})
    requests_mock.get(f'{BASE}/note-templates', json={'data': [{'id': 't1'}]})

    service.create_note_template({'name': 'SOAP', 'template_type': 'PROGRESS', 'content': 'S/O/A/P', 'structuredContent': {'s': ''}})
    sent = requests_mock.last_request.json()
    assert encryptor.decrypt_to_object(sent['structuredContent']) == {'s': ''}
    assert service.get_note_templates(template_type='PROGRESS') == [{'id': 't1'}]
    assert 'CREATE_TEMPLATE' in transport.actions()
    assert 'FETCH_TEMPLATES' in transport.actions()


def test_session_timeout_is_audited(service, clock, transport):
    service.record_user_activity()
    clock.advance(minutes=10)
    assert service.check_session_activity() is True

    clock.advance(minutes=31)
    assert service.check_session_activity() is False
    assert transport.actions()[-1] == 'SESSION_TIMEOUT'


def test_session_without_activity_is_not_audited(service, transport):
    assert service.check_session_activity() is False
    assert transport.sent == []


def test_build_documentation_service_uses_settings(storage):
    service = build_documentation_service(storage, base_url='http://example.test/api')
    assert service.api.base_url == 'http://example.test/api'
    assert service.api.timeout == 30.0
    assert service.session_ctx.timeout.total_seconds() == 30 * 60


class _FullDiskStorage(MemoryStorage):
    def __init__(self, failing_key):
        super().__init__()
        self.failing_key = failing_key

    def set_item(self, key, value):
        if key == self.failing_key:
            raise OSError(28, 'No space left on device')
        super().set_item(key, value)


def test_local_write_failure_still_saves_recovery(encryptor, audit, clock, transport, requests_mock):
    storage = _FullDiskStorage('note_draft_9')
    session_ctx = SessionContext(storage, clock)
    api = SecureApiClient(session_ctx, audit, encryptor, base_url=BASE)
    service = DocumentationService(api, SecureCache(storage, encryptor), audit, session_ctx, encryptor, clock=clock)

    with pytest.raises(OSError):
        service.save_draft('9', {'clientName': 'John Doe'})

    assert transport.actions()[-1] == 'SAVE_DRAFT_ERROR'
    assert 'No space left on device' in transport.sent[-1]['description']
    assert storage.get_item('note_draft_recovery_9') is not None
    assert service.recover_draft('9') == {'clientName': 'John Doe'}
    assert not requests_mock.called
