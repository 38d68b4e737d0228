"""Symmetric encryption helpers for data kept on the clinician's device.

Everything written to local storage (note drafts, queued audit events) is
passed through :class:`Encryptor` first.  The helper wraps a single Fernet
cipher derived from ``MENTALSPACE_ENCRYPTION_KEY``; the value may be a
ready-made Fernet key or an arbitrary passphrase, in which case it is
stretched with SHA-256.

All cipher failures surface as :class:`~mentalspace.errors.EncryptionError`
so callers never have to reason about ``cryptography`` exception types and
never observe a partially encrypted value.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import secrets
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from mentalspace.errors import EncryptionError


def derive_fernet_key(secret: str) -> bytes:
    """Return a Fernet key for ``secret``.

    Valid Fernet keys are used verbatim; anything else is hashed into one.
    """

    if not secret:
        raise EncryptionError("Encryption key must not be empty")
    raw = secret.encode("utf-8")
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32 and len(raw) == 44:
            return raw
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


class Encryptor:
    """Encrypt and decrypt strings and JSON-compatible objects."""

    def __init__(self, key: str) -> None:
        self._cipher = Fernet(derive_fernet_key(key))

    def encrypt(self, plaintext: str) -> str:
        try:
            return self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")
        except (AttributeError, TypeError, ValueError) as exc:
            raise EncryptionError("Failed to encrypt data") from exc

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._cipher.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, AttributeError, TypeError, ValueError) as exc:
            raise EncryptionError("Failed to decrypt data") from exc

    def encrypt_object(self, obj: Any) -> str:
        try:
            serialized = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise EncryptionError("Failed to encrypt object") from exc
        return self.encrypt(serialized)

    def decrypt_to_object(self, ciphertext: str) -> Any:
        plaintext = self.decrypt(ciphertext)
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise EncryptionError("Failed to decrypt object") from exc

    @staticmethod
    def hash(value: str) -> str:
        """Return the SHA-256 hex digest of ``value``."""

        return hash_value(value)

    @staticmethod
    def generate_token(length: int = 32) -> str:
        """Return ``length`` random bytes rendered as hex."""

        return generate_token(length)


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_token(length: int = 32) -> str:
    if length <= 0:
        raise ValueError("token length must be positive")
    return secrets.token_hex(length)


@lru_cache(maxsize=1)
def get_encryptor() -> Encryptor:
    """Return the process-wide encryptor built from the configured key."""

    from mentalspace.config import get_settings

    return Encryptor(get_settings().encryption_key)


__all__ = [
    "Encryptor",
    "derive_fernet_key",
    "generate_token",
    "get_encryptor",
    "hash_value",
]
