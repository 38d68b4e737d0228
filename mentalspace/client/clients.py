"""Client records from the workstation side.

Contact details (phone, email and street address) are encrypted field by
field before they leave the workstation and decrypted when records come
back, so the server only ever stores ciphertext for them.  Every call is
audited under the ``client`` module; audit descriptions carry record ids,
never names or contact details.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import structlog

from mentalspace.client.api import SecureApiClient
from mentalspace.client.audit import AuditEmitter
from mentalspace.client.service import AuditedService
from mentalspace.db.models import AuditModule
from mentalspace.encryption import Encryptor
from mentalspace.errors import EncryptionError

logger = structlog.get_logger(__name__)

ENCRYPTED_CLIENT_FIELDS = ("phone", "email", "address_line1", "address_line2")


class ClientRecordsService(AuditedService):
    audit_module = AuditModule.CLIENT
    entity_type = "client"

    def __init__(self, api: SecureApiClient, audit: AuditEmitter, encryptor: Encryptor) -> None:
        super().__init__(api, audit)
        self.encryptor = encryptor

    def encrypt_fields(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        payload = dict(record)
        for field in ENCRYPTED_CLIENT_FIELDS:
            if payload.get(field):
                payload[field] = self.encryptor.encrypt(str(payload[field]))
        return payload

    def decrypt_fields(self, record: Any) -> Any:
        if not isinstance(record, Mapping):
            return record
        decrypted = dict(record)
        for field in ENCRYPTED_CLIENT_FIELDS:
            value = decrypted.get(field)
            if not isinstance(value, str) or not value:
                continue
            try:
                decrypted[field] = self.encryptor.decrypt(value)
            except EncryptionError:
                # entered through a path that does not encrypt fields
                logger.debug("client_field_plaintext", client_id=decrypted.get("id"), field=field)
        return decrypted

    def get_clients(self, **filters: Any) -> List[Dict[str, Any]]:
        rows = self._call(
            "FETCH_CLIENTS",
            "User retrieved client list",
            "retrieving clients",
            lambda: self.api.get("/clients", params=filters),
        )
        return [self.decrypt_fields(row) for row in rows or []]

    def get_client(self, client_id: str) -> Dict[str, Any]:
        record = self._call(
            "VIEW_CLIENT",
            "User accessed a client record",
            "retrieving client",
            lambda: self.api.get(f"/clients/{client_id}"),
            entity_id=client_id,
        )
        return self.decrypt_fields(record)

    def create_client(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self.encrypt_fields(record)
        created = self._call(
            "CREATE_CLIENT",
            "User created a client record",
            "creating client",
            lambda: self.api.post("/clients", payload),
        )
        return self.decrypt_fields(created)

    def update_client(self, client_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self.encrypt_fields(changes)
        updated = self._call(
            "UPDATE_CLIENT",
            "User updated a client record",
            "updating client",
            lambda: self.api.put(f"/clients/{client_id}", payload),
            entity_id=client_id,
            new_value=",".join(sorted(payload)),
        )
        return self.decrypt_fields(updated)

    def deactivate_client(self, client_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Mark the client inactive; records are never deleted from the workstation."""

        description = "User deactivated a client record"
        if reason:
            description = f"{description}: {reason}"
        updated = self._call(
            "DEACTIVATE_CLIENT",
            description,
            "deactivating client",
            lambda: self.api.put(f"/clients/{client_id}", {"status": "INACTIVE"}),
            entity_id=client_id,
        )
        return self.decrypt_fields(updated)


__all__ = ["ClientRecordsService", "ENCRYPTED_CLIENT_FIELDS"]
