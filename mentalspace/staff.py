"""Staff directory lookups.

Accounts live in the ``users`` table; the directory exposes them without
credentials or lockout state.  A staff member can supervise notes when their
role carries ``note:approve`` or they are an admin.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from mentalspace.db.models import User
from mentalspace.rbac import ROLES, has_permission
from mentalspace.time_utils import isoformat


def can_supervise(role: Optional[str]) -> bool:
    return role == "admin" or has_permission(role, "note", "approve")


SUPERVISING_ROLES = frozenset(role for role in ROLES if can_supervise(role))


def get_staff(session: Session, staff_id: int) -> User:
    user = session.get(User, staff_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"Staff not found with id of {staff_id}")
    return user


def search_staff(
    session: Session,
    *,
    query: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    supervisors_only: bool = False,
    page: int = 1,
    limit: int = 25,
) -> tuple[List[User], int]:
    conditions = []
    if query:
        pattern = f"%{query.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name).like(pattern),
                func.lower(User.email).like(pattern),
            )
        )
    if role:
        role = role.strip().lower()
        if role not in ROLES:
            raise HTTPException(status_code=400, detail=f"Unknown role: {role}")
        conditions.append(User.role == role)
    if is_active is not None:
        conditions.append(User.is_active.is_(is_active))
    if supervisors_only:
        conditions.append(User.role.in_(sorted(SUPERVISING_ROLES)))

    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = session.execute(select(func.count()).select_from(User).where(*conditions)).scalar_one()
    rows = (
        session.execute(
            select(User)
            .where(*conditions)
            .order_by(User.last_name, User.first_name, User.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def serialize_staff(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "role": user.role,
        "is_active": user.is_active,
        "can_supervise": can_supervise(user.role),
        "last_login": isoformat(user.last_login),
        "created_at": isoformat(user.created_at),
    }


__all__ = ["SUPERVISING_ROLES", "can_supervise", "get_staff", "search_staff", "serialize_staff"]
