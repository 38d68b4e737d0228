"""Client (patient) directory."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from mentalspace.db.models import Client, ClientStatus, User
from mentalspace.notes_service import count_notes_for_client
from mentalspace.time_utils import isoformat


def get_client(session: Session, client_id: str) -> Client:
    client = session.get(Client, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail=f"Client not found with id of {client_id}")
    return client


def search_clients(
    session: Session,
    *,
    query: Optional[str] = None,
    client_status: Optional[ClientStatus] = None,
    therapist_id: Optional[int] = None,
    page: int = 1,
    limit: int = 25,
) -> tuple[List[Client], int]:
    conditions = []
    if query:
        pattern = f"%{query.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(Client.first_name).like(pattern),
                func.lower(Client.last_name).like(pattern),
                func.lower(Client.preferred_name).like(pattern),
                func.lower(Client.email).like(pattern),
            )
        )
    if client_status is not None:
        conditions.append(Client.status == client_status)
    if therapist_id is not None:
        conditions.append(Client.assigned_therapist_id == therapist_id)

    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = session.execute(select(func.count()).select_from(Client).where(*conditions)).scalar_one()
    rows = (
        session.execute(
            select(Client)
            .where(*conditions)
            .order_by(Client.last_name, Client.first_name)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def _check_therapist(session: Session, therapist_id: Optional[int]) -> None:
    if therapist_id is not None and session.get(User, therapist_id) is None:
        raise HTTPException(status_code=404, detail=f"Staff member not found with id of {therapist_id}")


def create_client(session: Session, user: User, data: Dict[str, Any]) -> Client:
    _check_therapist(session, data.get("assigned_therapist_id"))
    client = Client(created_by=user.id, **data)
    session.add(client)
    session.flush()
    return client


def update_client(session: Session, client: Client, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply ``changes`` and return the previous values of the touched fields."""

    if "assigned_therapist_id" in changes:
        _check_therapist(session, changes["assigned_therapist_id"])
    previous = {field: getattr(client, field) for field in changes}
    for field, value in changes.items():
        setattr(client, field, value)
    session.flush()
    return previous


def delete_client(session: Session, client: Client) -> None:
    """Clients with clinical history are deactivated rather than removed."""

    if count_notes_for_client(session, client.id):
        client.status = ClientStatus.INACTIVE
        session.flush()
        return
    session.delete(client)
    session.flush()


def _plain(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def serialize_client(client: Client) -> Dict[str, Any]:
    return {
        "id": client.id,
        "first_name": client.first_name,
        "last_name": client.last_name,
        "preferred_name": client.preferred_name,
        "date_of_birth": _plain(client.date_of_birth),
        "gender": client.gender,
        "phone": client.phone,
        "email": client.email,
        "address_line1": client.address_line1,
        "address_line2": client.address_line2,
        "city": client.city,
        "state": client.state,
        "postal_code": client.postal_code,
        "country": client.country,
        "status": _plain(client.status),
        "risk_flag": _plain(client.risk_flag),
        "assigned_therapist_id": client.assigned_therapist_id,
        "referral_source": client.referral_source,
        "created_at": isoformat(client.created_at),
        "updated_at": isoformat(client.updated_at),
    }


def describe_changes(previous: Dict[str, Any]) -> Dict[str, Any]:
    return {field: _plain(value) for field, value in previous.items()}


__all__ = [
    "create_client",
    "delete_client",
    "describe_changes",
    "get_client",
    "search_clients",
    "serialize_client",
    "update_client",
]
