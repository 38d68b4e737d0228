import base64

import pytest
from cryptography.fernet import Fernet

from mentalspace.encryption import Encryptor, derive_fernet_key, generate_token, hash_value
from mentalspace.errors import EncryptionError


def test_encrypt_decrypt_string(encryptor):
    token = encryptor.encrypt('session notes')
    assert token != 'session notes'
    assert encryptor.decrypt(token) == 'session notes'


def test_encrypt_object_preserves_structure(encryptor):
    payload = {'clientName': 'John Doe', 'goals': ['sleep', 'mood'], 'score': 7}
    token = encryptor.encrypt_object(payload)
    assert 'John Doe' not in token
    assert encryptor.decrypt_to_object(token) == payload


def test_decrypt_with_wrong_key_raises(encryptor):
    token = Encryptor('other-key').encrypt('secret')
    with pytest.raises(EncryptionError) as excinfo:
        encryptor.decrypt(token)
    assert str(excinfo.value) == 'Failed to decrypt data'


def test_decrypt_garbage_raises(encryptor):
    with pytest.raises(EncryptionError):
        encryptor.decrypt('not-a-fernet-token')


def test_decrypt_to_object_rejects_non_json(encryptor):
    token = encryptor.encrypt('plain text, not json')
    with pytest.raises(EncryptionError) as excinfo:
        encryptor.decrypt_to_object(token)
    assert str(excinfo.value) == 'Failed to decrypt object'


def test_encrypt_object_rejects_unserialisable(encryptor):
    with pytest.raises(EncryptionError) as excinfo:
        encryptor.encrypt_object({'when': object()})
    assert str(excinfo.value) == 'Failed to encrypt object'


def test_valid_fernet_key_used_verbatim():
    key = Fernet.generate_key()
    assert derive_fernet_key(key.decode()) == key


def test_passphrase_is_stretched_to_fernet_key():
    derived = derive_fernet_key('correct horse battery staple')
    assert len(base64.urlsafe_b64decode(derived)) == 32
    assert derived == derive_fernet_key('correct horse battery staple')


def test_empty_key_rejected():
    with pytest.raises(EncryptionError):
        derive_fernet_key('')


def test_hash_is_deterministic_sha256(encryptor):
    digest = encryptor.hash('Dr. John Smith')
    assert digest == encryptor.hash('Dr. John Smith')
    assert digest == hash_value('Dr. John Smith')
    assert len(digest) == 64
    assert digest != encryptor.hash('Dr. Jane Smith')


def test_generate_token_length_and_uniqueness():
    first = generate_token(16)
    second = generate_token(16)
    assert len(first) == 32
    assert first != second
    assert len(Encryptor.generate_token()) == 64
    with pytest.raises(ValueError):
        generate_token(0)
