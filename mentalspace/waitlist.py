"""Waitlist entries and outreach tracking for prospective clients."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from mentalspace.db.models import (
    Client,
    ClientStatus,
    ContactMethod,
    User,
    WaitlistContactAttempt,
    WaitlistEntry,
    WaitlistStatus,
    WaitlistUrgency,
)
from mentalspace.time_utils import isoformat

OPEN_STATUSES = (WaitlistStatus.ACTIVE, WaitlistStatus.CONTACTED)

REMOVAL_REASONS = frozenset(
    {
        "Scheduled",
        "Client Request",
        "Unable to Contact",
        "No Longer Needed",
        "Referred Out",
        "Other",
    }
)


def get_entry(session: Session, entry_id: str) -> WaitlistEntry:
    entry = session.get(WaitlistEntry, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Waitlist entry not found with id of {entry_id}")
    return entry


def list_entries(
    session: Session,
    *,
    entry_status: Optional[WaitlistStatus] = None,
    urgency: Optional[WaitlistUrgency] = None,
    client_id: Optional[str] = None,
) -> List[WaitlistEntry]:
    query = select(WaitlistEntry)
    if entry_status is not None:
        query = query.where(WaitlistEntry.status == entry_status)
    if urgency is not None:
        query = query.where(WaitlistEntry.urgency == urgency)
    if client_id:
        query = query.where(WaitlistEntry.client_id == client_id)
    query = query.order_by(WaitlistEntry.priority.desc(), WaitlistEntry.request_date)
    return list(session.execute(query).scalars().all())


def open_entry_for_client(session: Session, client_id: str) -> Optional[WaitlistEntry]:
    return session.execute(
        select(WaitlistEntry).where(
            WaitlistEntry.client_id == client_id,
            WaitlistEntry.status.in_(OPEN_STATUSES),
        )
    ).scalar_one_or_none()


def create_entry(session: Session, user: User, data: Dict[str, Any]) -> WaitlistEntry:
    """Add a client to the waitlist; a client may hold only one open entry."""

    client = session.get(Client, data["client_id"])
    if client is None:
        raise HTTPException(status_code=404, detail=f"Client not found with id of {data['client_id']}")
    if open_entry_for_client(session, client.id) is not None:
        raise HTTPException(status_code=400, detail="Client already has an active waitlist entry")
    entry = WaitlistEntry(created_by=user.id, **data)
    session.add(entry)
    client.status = ClientStatus.WAITLIST
    session.flush()
    return entry


def update_entry(session: Session, user: User, entry: WaitlistEntry, changes: Dict[str, Any]) -> WaitlistEntry:
    for field, value in changes.items():
        setattr(entry, field, value)
    entry.updated_by = user.id
    session.flush()
    return entry


def add_contact_attempt(
    session: Session,
    user: User,
    entry: WaitlistEntry,
    *,
    method: Optional[ContactMethod],
    notes: Optional[str] = None,
    successful: bool = False,
) -> WaitlistContactAttempt:
    """Record an outreach attempt; the first success moves Active to Contacted."""

    if method is None:
        raise HTTPException(status_code=400, detail="Please provide contact method")
    attempt = WaitlistContactAttempt(
        entry_id=entry.id,
        method=method,
        notes=notes,
        successful=successful,
        staff_member_id=user.id,
    )
    session.add(attempt)
    if successful and entry.status is WaitlistStatus.ACTIVE:
        entry.status = WaitlistStatus.CONTACTED
    entry.updated_by = user.id
    session.flush()
    return attempt


def remove_entry(
    session: Session,
    user: User,
    entry: WaitlistEntry,
    reason: Optional[str],
    notes: Optional[str] = None,
) -> WaitlistEntry:
    if not reason:
        raise HTTPException(status_code=400, detail="Please provide removal reason")
    if reason not in REMOVAL_REASONS:
        raise HTTPException(status_code=400, detail=f"Unknown removal reason: {reason}")
    entry.status = WaitlistStatus.REMOVED
    entry.removal_reason = reason
    entry.removal_notes = notes or ""
    entry.updated_by = user.id
    client = session.get(Client, entry.client_id)
    if client is not None and client.status is ClientStatus.WAITLIST:
        client.status = ClientStatus.ACTIVE if reason == "Scheduled" else ClientStatus.INACTIVE
    session.flush()
    return entry


def contact_attempts(session: Session, entry: WaitlistEntry) -> List[WaitlistContactAttempt]:
    return list(
        session.execute(
            select(WaitlistContactAttempt)
            .where(WaitlistContactAttempt.entry_id == entry.id)
            .order_by(WaitlistContactAttempt.date)
        )
        .scalars()
        .all()
    )


def serialize_entry(session: Session, entry: WaitlistEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "client_id": entry.client_id,
        "request_date": isoformat(entry.request_date),
        "service_requested": entry.service_requested,
        "preferred_days": entry.preferred_days or [],
        "preferred_times": entry.preferred_times or [],
        "urgency": entry.urgency.value,
        "notes": entry.notes,
        "status": entry.status.value,
        "priority": entry.priority,
        "removal_reason": entry.removal_reason,
        "removal_notes": entry.removal_notes,
        "contact_attempts": [
            {
                "id": attempt.id,
                "date": isoformat(attempt.date),
                "method": attempt.method.value,
                "notes": attempt.notes,
                "successful": attempt.successful,
                "staff_member_id": attempt.staff_member_id,
            }
            for attempt in contact_attempts(session, entry)
        ],
        "created_by": entry.created_by,
        "updated_by": entry.updated_by,
        "created_at": isoformat(entry.created_at),
        "updated_at": isoformat(entry.updated_at),
    }


__all__ = [
    "OPEN_STATUSES",
    "REMOVAL_REASONS",
    "add_contact_attempt",
    "create_entry",
    "get_entry",
    "list_entries",
    "open_entry_for_client",
    "remove_entry",
    "serialize_entry",
    "update_entry",
]
