"""Note persistence and the documentation/supervision workflow.

Status moves ``DRAFT -> COMPLETED -> SIGNED -> LOCKED``.  Supervision is a
side track: submitting marks the note ``COMPLETED`` with supervision
``PENDING``; a supervisor approves it or rejects it back to ``DRAFT``.  A
note cannot be signed while its review is pending or rejected, and signed or
locked notes are read-only.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mentalspace.db.models import (
    Client,
    Note,
    NoteStatus,
    NoteTemplate,
    NoteType,
    NoteVersion,
    SupervisionStatus,
    User,
)
from mentalspace.staff import can_supervise
from mentalspace.time_utils import isoformat, utc_now

READ_ONLY_STATUSES = frozenset({NoteStatus.SIGNED, NoteStatus.LOCKED})


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_note(session: Session, note_id: str) -> Note:
    note = session.get(Note, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail=f"Note not found with id of {note_id}")
    return note


def list_notes(
    session: Session,
    *,
    client_id: Optional[str] = None,
    provider_id: Optional[int] = None,
    note_status: Optional[NoteStatus] = None,
    note_type: Optional[NoteType] = None,
    supervisor_id: Optional[int] = None,
) -> List[Note]:
    query = select(Note)
    if client_id:
        query = query.where(Note.client_id == client_id)
    if provider_id is not None:
        query = query.where(Note.provider_id == provider_id)
    if note_status is not None:
        query = query.where(Note.status == note_status)
    if note_type is not None:
        query = query.where(Note.note_type == note_type)
    if supervisor_id is not None:
        query = query.where(Note.supervisor_id == supervisor_id)
    return list(session.execute(query.order_by(Note.created_at.desc())).scalars().all())


def _latest_version(session: Session, note_id: str) -> Optional[NoteVersion]:
    return session.execute(
        select(NoteVersion)
        .where(NoteVersion.note_id == note_id)
        .order_by(NoteVersion.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def record_version(session: Session, note: Note, user: User) -> Optional[NoteVersion]:
    """Snapshot ``note.content`` unless it matches the latest snapshot."""

    latest = _latest_version(session, note.id)
    if latest is not None and latest.content == note.content:
        return None
    version = NoteVersion(
        note_id=note.id,
        version=(latest.version if latest else 0) + 1,
        user_id=user.id,
        content=note.content,
    )
    session.add(version)
    session.flush()
    return version


def list_versions(session: Session, note: Note) -> List[NoteVersion]:
    return list(
        session.execute(
            select(NoteVersion).where(NoteVersion.note_id == note.id).order_by(NoteVersion.version.desc())
        )
        .scalars()
        .all()
    )


def create_note(
    session: Session,
    user: User,
    *,
    client_id: str,
    note_type: NoteType,
    content: Any = None,
    appointment_id: Optional[str] = None,
    template_id: Optional[str] = None,
) -> Note:
    if session.get(Client, client_id) is None:
        raise HTTPException(status_code=404, detail=f"Client not found with id of {client_id}")
    if template_id and session.get(NoteTemplate, template_id) is None:
        raise HTTPException(status_code=404, detail=f"Template not found with id of {template_id}")
    note = Note(
        client_id=client_id,
        provider_id=user.id,
        note_type=note_type,
        content=content,
        appointment_id=appointment_id,
        template_id=template_id,
        status=NoteStatus.DRAFT,
    )
    session.add(note)
    session.flush()
    if content is not None:
        record_version(session, note, user)
    return note


def _ensure_editable(note: Note) -> None:
    if note.status in READ_ONLY_STATUSES:
        raise _forbidden("Cannot update a locked note")


def update_note(session: Session, user: User, note: Note, changes: Dict[str, Any]) -> Note:
    """Apply ``changes`` (already validated) to an editable note.

    Signed notes may only be moved to ``LOCKED`` by an administrator.
    """

    new_status = changes.get("status")
    if note.status is NoteStatus.SIGNED and new_status is NoteStatus.LOCKED and set(changes) == {"status"}:
        if user.role != "admin":
            raise _forbidden("Only administrators may lock a note")
        note.status = NoteStatus.LOCKED
        session.flush()
        return note

    _ensure_editable(note)
    if new_status is not None and new_status not in (NoteStatus.DRAFT, NoteStatus.COMPLETED):
        raise HTTPException(status_code=400, detail=f"Cannot set note status to {new_status.value}")
    for field in ("appointment_id", "template_id", "status"):
        if field in changes:
            setattr(note, field, changes[field])
    if "content" in changes:
        note.content = changes["content"]
        record_version(session, note, user)
    session.flush()
    return note


def save_draft(session: Session, user: User, note: Note, content: Any) -> Note:
    if note.status is not NoteStatus.DRAFT:
        raise _forbidden(f"Cannot save a draft for a note with status: {note.status.value}")
    note.content = content
    record_version(session, note, user)
    session.flush()
    return note


def finalize_note(
    session: Session,
    user: User,
    note: Note,
    signature_hash: str,
) -> Note:
    """Sign the note with ``signature_hash`` (the client sends a digest, never the raw signature)."""

    if note.status in READ_ONLY_STATUSES:
        raise _forbidden(f"Cannot sign a note with status: {note.status.value}")
    if note.supervision_status in (SupervisionStatus.PENDING, SupervisionStatus.REJECTED):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot sign a note while supervision is {note.supervision_status.value}",
        )
    if note.provider_id != user.id and user.role != "admin":
        raise _forbidden("Only the authoring provider may sign this note")
    note.signature_hash = signature_hash
    note.signed_by = user.id
    note.signed_at = utc_now()
    note.status = NoteStatus.SIGNED
    session.flush()
    return note


def submit_for_supervision(session: Session, user: User, note: Note, supervisor_id: int) -> Note:
    _ensure_editable(note)
    if note.supervision_status is SupervisionStatus.PENDING:
        raise HTTPException(status_code=409, detail="Note is already awaiting supervision")
    supervisor = session.get(User, supervisor_id)
    if supervisor is None or not supervisor.is_active:
        raise HTTPException(status_code=404, detail=f"Supervisor not found with id of {supervisor_id}")
    if not can_supervise(supervisor.role):
        raise HTTPException(status_code=400, detail="Selected staff member cannot supervise notes")
    note.supervisor_id = supervisor.id
    note.supervision_status = SupervisionStatus.PENDING
    note.supervision_comments = None
    note.supervision_date = None
    note.status = NoteStatus.COMPLETED
    session.flush()
    return note


def _review(note: Note, reviewer: User) -> None:
    if note.supervision_status is not SupervisionStatus.PENDING:
        raise HTTPException(status_code=409, detail="Note is not awaiting supervision")
    if reviewer.role != "admin" and note.supervisor_id != reviewer.id:
        raise _forbidden("Only the assigned supervisor may review this note")


def approve_note(session: Session, reviewer: User, note: Note, comments: Optional[str] = None) -> Note:
    _review(note, reviewer)
    note.supervision_status = SupervisionStatus.APPROVED
    note.supervision_date = utc_now()
    note.supervision_comments = comments
    session.flush()
    return note


def reject_note(session: Session, reviewer: User, note: Note, comments: Optional[str] = None) -> Note:
    _review(note, reviewer)
    if not comments:
        raise HTTPException(status_code=400, detail="Comments are required when rejecting a note")
    note.supervision_status = SupervisionStatus.REJECTED
    note.supervision_date = utc_now()
    note.supervision_comments = comments
    note.status = NoteStatus.DRAFT
    session.flush()
    return note


def delete_note(session: Session, note: Note) -> None:
    if note.status is not NoteStatus.DRAFT:
        raise _forbidden(f"Cannot delete a note with status: {note.status.value}")
    for version in list_versions(session, note):
        session.delete(version)
    session.delete(note)
    session.flush()


def count_notes_for_client(session: Session, client_id: str) -> int:
    return int(
        session.execute(select(func.count()).select_from(Note).where(Note.client_id == client_id)).scalar_one()
    )


def serialize_note(note: Note) -> Dict[str, Any]:
    return {
        "id": note.id,
        "client_id": note.client_id,
        "provider_id": note.provider_id,
        "appointment_id": note.appointment_id,
        "note_type": note.note_type.value,
        "structuredContent": note.content,
        "template_id": note.template_id,
        "status": note.status.value,
        "signed_by": note.signed_by,
        "signed_at": isoformat(note.signed_at),
        "supervisor_id": note.supervisor_id,
        "supervision_status": note.supervision_status.value if note.supervision_status else None,
        "supervision_date": isoformat(note.supervision_date),
        "supervision_comments": note.supervision_comments,
        "created_at": isoformat(note.created_at),
        "updated_at": isoformat(note.updated_at),
    }


def serialize_version(version: NoteVersion) -> Dict[str, Any]:
    return {
        "id": version.id,
        "note_id": version.note_id,
        "version": version.version,
        "user_id": version.user_id,
        "structuredContent": version.content,
        "created_at": isoformat(version.created_at),
    }


__all__ = [
    "READ_ONLY_STATUSES",
    "approve_note",
    "count_notes_for_client",
    "create_note",
    "delete_note",
    "finalize_note",
    "get_note",
    "list_notes",
    "list_versions",
    "record_version",
    "reject_note",
    "save_draft",
    "serialize_note",
    "serialize_version",
    "submit_for_supervision",
    "update_note",
]
