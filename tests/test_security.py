from mentalspace.security import (
    REDACTED,
    audits_response,
    hash_identifier,
    is_sensitive_endpoint,
    redact_sensitive,
    requires_body_encryption,
)


def test_redact_sensitive_masks_top_level_fields_only():
    payload = {
        'email': 'a@b.test',
        'password': 'secret',
        'ssn': '123-45-6789',
        'nested': {'password': 'inner'},
    }

    redacted = redact_sensitive(payload)

    assert redacted['email'] == 'a@b.test'
    assert redacted['password'] == REDACTED
    assert redacted['ssn'] == REDACTED
    assert redacted['nested'] == {'password': 'inner'}
    assert payload['password'] == 'secret'


def test_redact_sensitive_passes_through_non_mappings():
    assert redact_sensitive(['password']) == ['password']
    assert redact_sensitive(None) is None


def test_endpoint_classification():
    assert is_sensitive_endpoint('/api/auth/login')
    assert is_sensitive_endpoint('/api/clients/5?include=notes')
    assert not is_sensitive_endpoint('/api/waitlist')

    assert requires_body_encryption('/api/clients/5')
    assert requires_body_encryption('/api/auth/updatepassword')
    assert not requires_body_encryption('/api/notes/3')

    assert audits_response('/api/notes/3/finalize')
    assert not audits_response('/api/note-templates')


def test_hash_identifier_is_stable_and_short():
    first = hash_identifier('user@example.com')

    assert first == hash_identifier('user@example.com')
    assert first != hash_identifier('other@example.com')
    assert len(first) == 16
    assert hash_identifier('') is None
