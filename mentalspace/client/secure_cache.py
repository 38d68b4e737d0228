"""Encrypted key/value cache on top of :mod:`mentalspace.storage`.

Entries that cannot be decrypted or parsed are deleted and reported as
missing.  The cache is a convenience for unsaved work, never a source of
truth, so erasing a damaged entry is always safe.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Optional

import structlog

from mentalspace.encryption import Encryptor
from mentalspace.errors import EncryptionError
from mentalspace.storage import KeyValueStorage

logger = structlog.get_logger(__name__)


class SecureCache:
    def __init__(self, storage: KeyValueStorage, encryptor: Encryptor) -> None:
        self.storage = storage
        self.encryptor = encryptor

    def secure_store(self, key: str, data: Any) -> None:
        """Encrypt ``data`` and write it under ``key``.

        Strings are stored as-is.  Mappings, non-string sequences, numbers,
        booleans and ``None`` are serialised as JSON; anything else is
        converted with ``str``.
        """

        if isinstance(data, str):
            ciphertext = self.encryptor.encrypt(data)
        elif data is None or isinstance(data, (bool, int, float)):
            ciphertext = self.encryptor.encrypt_object(data)
        elif isinstance(data, (Mapping, Sequence)) and not isinstance(data, (bytes, bytearray)):
            ciphertext = self.encryptor.encrypt_object(data)
        else:
            ciphertext = self.encryptor.encrypt(str(data))
        self.storage.set_item(key, ciphertext)

    def secure_retrieve(self, key: str, is_object: bool = True) -> Optional[Any]:
        """Return the decrypted value under ``key`` or ``None``.

        A missing key yields ``None``.  A corrupted entry is removed from
        storage and also yields ``None``.
        """

        ciphertext = self.storage.get_item(key)
        if ciphertext is None:
            return None
        try:
            plaintext = self.encryptor.decrypt(ciphertext)
            return json.loads(plaintext) if is_object else plaintext
        except (EncryptionError, json.JSONDecodeError):
            logger.warning("secure_cache_entry_discarded", key=key)
            self.storage.remove_item(key)
            return None

    def remove(self, key: str) -> None:
        self.storage.remove_item(key)


__all__ = ["SecureCache"]
