"""Note template storage.

Templates are either global (visible to every clinician) or owned by the
staff member who created them.  Only the owner or an administrator may change
or remove a template.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from mentalspace.db.models import NoteTemplate, NoteType, User
from mentalspace.time_utils import isoformat


def list_templates(
    session: Session,
    user: User,
    *,
    template_type: Optional[NoteType] = None,
    include_inactive: bool = False,
) -> List[NoteTemplate]:
    query = select(NoteTemplate).where(
        or_(NoteTemplate.is_global.is_(True), NoteTemplate.created_by == user.id)
    )
    if template_type is not None:
        query = query.where(NoteTemplate.template_type == template_type)
    if not include_inactive:
        query = query.where(NoteTemplate.is_active.is_(True))
    return list(session.execute(query.order_by(NoteTemplate.name)).scalars().all())


def get_template(session: Session, user: User, template_id: str) -> NoteTemplate:
    template = session.get(NoteTemplate, template_id)
    if template is None or not (template.is_global or template.created_by == user.id or user.role == "admin"):
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def create_template(session: Session, user: User, data: Dict[str, Any]) -> NoteTemplate:
    if data.get("is_global") and user.role != "admin":
        raise HTTPException(status_code=403, detail="Only administrators may create global templates")
    template = NoteTemplate(created_by=user.id, **data)
    session.add(template)
    session.flush()
    return template


def _ensure_owner(user: User, template: NoteTemplate) -> None:
    if user.role != "admin" and template.created_by != user.id:
        raise HTTPException(status_code=403, detail="Cannot modify a template you do not own")


def update_template(session: Session, user: User, template: NoteTemplate, changes: Dict[str, Any]) -> NoteTemplate:
    _ensure_owner(user, template)
    if changes.get("is_global") and user.role != "admin":
        raise HTTPException(status_code=403, detail="Only administrators may publish global templates")
    for field, value in changes.items():
        setattr(template, field, value)
    session.flush()
    return template


def delete_template(session: Session, user: User, template: NoteTemplate) -> None:
    """Deactivate ``template`` so notes referencing it keep a valid link."""

    _ensure_owner(user, template)
    template.is_active = False
    session.flush()


def serialize_template(template: NoteTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "template_type": template.template_type.value,
        "content": template.content,
        "structuredContent": template.structured_content,
        "created_by": template.created_by,
        "is_active": template.is_active,
        "is_global": template.is_global,
        "created_at": isoformat(template.created_at),
        "updated_at": isoformat(template.updated_at),
    }


__all__ = [
    "create_template",
    "delete_template",
    "get_template",
    "list_templates",
    "serialize_template",
    "update_template",
]
