"""Clinical documentation workflow as seen from a clinician's workstation.

:class:`DocumentationService` wraps the note and template endpoints.  Each
call reports an audit event before hitting the API and a ``*_ERROR`` event
if the call fails, then re-raises.  Drafts are written to the encrypted local
cache on every save so work survives a dropped connection; see
:mod:`mentalspace.client.drafts`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import structlog

from mentalspace.client.api import SecureApiClient
from mentalspace.client.audit import AuditEmitter, FailedAuditQueue, HttpAuditTransport
from mentalspace.client.drafts import DraftSlots
from mentalspace.client.secure_cache import SecureCache
from mentalspace.client.service import AuditedService, error_text
from mentalspace.client.session import SessionContext
from mentalspace.db.models import AuditModule, AuditSeverity, NoteType
from mentalspace.encryption import Encryptor
from mentalspace.errors import EncryptionError, MentalSpaceError
from mentalspace.storage import KeyValueStorage
from mentalspace.time_utils import Clock, isoformat, utc_now

logger = structlog.get_logger(__name__)

ENCRYPTED_NOTE_TYPES = frozenset(
    {NoteType.INTAKE, NoteType.PROGRESS, NoteType.TREATMENT_PLAN, NoteType.DISCHARGE}
)


class DocumentationService(AuditedService):
    audit_module = AuditModule.DOCUMENTATION
    entity_type = "note"

    def __init__(
        self,
        api: SecureApiClient,
        cache: SecureCache,
        audit: AuditEmitter,
        session_ctx: SessionContext,
        encryptor: Encryptor,
        *,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(api, audit)
        self.cache = cache
        self.session_ctx = session_ctx
        self.encryptor = encryptor
        self.clock = clock

    def drafts(self, note_id: str) -> DraftSlots:
        return DraftSlots(self.cache, note_id, clock=self.clock)

    def _encrypt_content(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload.get("structuredContent"):
            payload["structuredContent"] = self.encryptor.encrypt_object(payload["structuredContent"])
        return payload

    # -- notes -------------------------------------------------------------

    def get_notes(self, **filters: Any) -> List[Dict[str, Any]]:
        return self._call(
            "FETCH_NOTES",
            "User retrieved notes list",
            "retrieving notes",
            lambda: self.api.get("/notes", params=filters),
        )

    def get_note(self, note_id: str) -> Dict[str, Any]:
        return self._call(
            "FETCH_NOTE",
            "User retrieved a specific note",
            "retrieving note",
            lambda: self.api.get(f"/notes/{note_id}"),
            entity_id=note_id,
        )

    def create_note(self, note: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a note; clinical note types have their content encrypted first."""

        payload = dict(note)
        note_type = NoteType(payload["note_type"])
        if note_type in ENCRYPTED_NOTE_TYPES:
            payload = self._encrypt_content(payload)
        return self._call(
            "CREATE_NOTE",
            f"User created a new {note_type.value} note",
            "creating note",
            lambda: self.api.post("/notes", payload),
        )

    def update_note(self, note_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self._encrypt_content(dict(changes))
        return self._call(
            "UPDATE_NOTE",
            "User updated a note",
            "updating note",
            lambda: self.api.put(f"/notes/{note_id}", payload),
            entity_id=note_id,
        )

    def save_draft(self, note_id: str, structured_content: Any) -> Dict[str, Any]:
        """Store the draft locally, then push it to the server.

        When the server save fails the content is also written to the
        recovery slot before the error propagates.
        """

        slots = self.drafts(note_id)
        try:
            slots.write_primary(structured_content)
            self._audit("SAVE_DRAFT", "User saved a note draft", entity_id=note_id)
            encrypted = self.encryptor.encrypt_object(structured_content)
            return self.api.put(f"/notes/{note_id}/draft", {"structuredContent": encrypted})
        except Exception as exc:
            self._audit(
                "SAVE_DRAFT_ERROR",
                f"Error saving draft: {error_text(exc)}",
                AuditSeverity.WARNING,
                entity_id=note_id,
            )
            try:
                slots.write_recovery(structured_content, error=error_text(exc))
            except (EncryptionError, OSError):
                logger.error("draft_recovery_write_failed", note_id=note_id, exc_info=True)
            raise

    def recover_draft(self, note_id: str) -> Optional[Any]:
        """Return locally saved draft content (primary slot first) or ``None``."""

        try:
            record = self.drafts(note_id).resolve()
        except (MentalSpaceError, OSError) as exc:
            self._audit(
                "RECOVER_DRAFT_ERROR",
                f"Error recovering draft: {error_text(exc)}",
                AuditSeverity.WARNING,
                entity_id=note_id,
            )
            return None
        if record is None:
            return None
        self._audit(
            "RECOVER_DRAFT",
            "User recovered a note draft from local storage",
            entity_id=note_id,
        )
        return record.structured_content

    def finalize_note(self, note_id: str, signature: str) -> Dict[str, Any]:
        """Sign the note with a hash of ``signature`` and clear local drafts."""

        signature_hash = self.encryptor.hash(signature)
        result = self._call(
            "FINALIZE_NOTE",
            "User finalized and signed a note",
            "finalizing note",
            lambda: self.api.put(
                f"/notes/{note_id}/finalize",
                {"signature": signature_hash, "timestamp": isoformat(self.clock())},
            ),
            entity_id=note_id,
        )
        self.drafts(note_id).clear()
        return result

    def submit_for_supervision(self, note_id: str, supervisor_id: int) -> Dict[str, Any]:
        return self._call(
            "SUBMIT_FOR_SUPERVISION",
            "User submitted a note for supervision",
            "submitting note for supervision",
            lambda: self.api.put(f"/notes/{note_id}/submit-for-supervision", {"supervisorId": supervisor_id}),
            entity_id=note_id,
        )

    def approve_note(self, note_id: str, comments: Optional[str] = None) -> Dict[str, Any]:
        return self._call(
            "APPROVE_NOTE",
            "Supervisor approved a note",
            "approving note",
            lambda: self.api.put(f"/notes/{note_id}/approve", {"comments": comments}),
            entity_id=note_id,
        )

    def reject_note(self, note_id: str, comments: str) -> Dict[str, Any]:
        return self._call(
            "REJECT_NOTE",
            "Supervisor rejected a note",
            "rejecting note",
            lambda: self.api.put(f"/notes/{note_id}/reject", {"comments": comments}),
            entity_id=note_id,
        )

    def delete_note(self, note_id: str) -> None:
        self._call(
            "DELETE_NOTE",
            "User deleted a note",
            "deleting note",
            lambda: self.api.delete(f"/notes/{note_id}"),
            severity=AuditSeverity.WARNING,
            entity_id=note_id,
        )
        self.drafts(note_id).clear()

    # -- templates ---------------------------------------------------------

    def get_note_templates(self, **filters: Any) -> List[Dict[str, Any]]:
        return self._call(
            "FETCH_TEMPLATES",
            "User retrieved note templates",
            "retrieving templates",
            lambda: self.api.get("/note-templates", params=filters),
            entity_type="template",
        )

    def get_note_template(self, template_id: str) -> Dict[str, Any]:
        return self._call(
            "FETCH_TEMPLATE",
            "User retrieved a specific note template",
            "retrieving template",
            lambda: self.api.get(f"/note-templates/{template_id}"),
            entity_type="template",
            entity_id=template_id,
        )

    def create_note_template(self, template: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self._encrypt_content(dict(template))
        return self._call(
            "CREATE_TEMPLATE",
            f"User created a new {payload.get('template_type')} template",
            "creating template",
            lambda: self.api.post("/note-templates", payload),
            entity_type="template",
        )

    def update_note_template(self, template_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = self._encrypt_content(dict(changes))
        return self._call(
            "UPDATE_TEMPLATE",
            "User updated a note template",
            "updating template",
            lambda: self.api.put(f"/note-templates/{template_id}", payload),
            entity_type="template",
            entity_id=template_id,
        )

    def delete_note_template(self, template_id: str) -> None:
        self._call(
            "DELETE_TEMPLATE",
            "User deleted a note template",
            "deleting template",
            lambda: self.api.delete(f"/note-templates/{template_id}"),
            severity=AuditSeverity.WARNING,
            entity_type="template",
            entity_id=template_id,
        )

    # -- session -----------------------------------------------------------

    def check_session_activity(self) -> bool:
        """Return ``False`` once the clinician has been idle past the timeout."""

        if self.session_ctx.check_activity():
            return True
        if self.session_ctx.idle_for() is not None:
            self.audit.log_event(
                "SESSION_TIMEOUT",
                "User session timed out due to inactivity",
                AuditModule.DOCUMENTATION,
            )
        return False

    def record_user_activity(self) -> None:
        self.session_ctx.record_activity()


def build_documentation_service(
    storage: Optional[KeyValueStorage] = None,
    *,
    base_url: Optional[str] = None,
    encryptor: Optional[Encryptor] = None,
    clock: Clock = utc_now,
) -> DocumentationService:
    """Wire up the default client stack from :func:`mentalspace.config.get_settings`."""

    from datetime import timedelta

    from mentalspace.config import get_settings
    from mentalspace.encryption import get_encryptor
    from mentalspace.storage import JsonFileStorage

    settings = get_settings()
    storage = storage if storage is not None else JsonFileStorage.default()
    encryptor = encryptor or get_encryptor()
    base_url = base_url or settings.api_url
    session_ctx = SessionContext(storage, clock, timedelta(minutes=settings.session_timeout_minutes))
    transport = HttpAuditTransport(base_url, lambda: session_ctx.token, timeout=settings.request_timeout)
    audit = AuditEmitter(transport, FailedAuditQueue(storage), clock=clock)
    api = SecureApiClient(
        session_ctx,
        audit,
        encryptor,
        base_url=base_url,
        timeout=settings.request_timeout,
        client_version=settings.client_version,
    )
    return DocumentationService(api, SecureCache(storage, encryptor), audit, session_ctx, encryptor, clock=clock)


__all__ = ["DocumentationService", "ENCRYPTED_NOTE_TYPES", "build_documentation_service"]
