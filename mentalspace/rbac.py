"""Static role/resource/action permission matrix."""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

CRUD = frozenset({"read", "create", "update", "delete"})

ROLE_PERMISSIONS: Dict[str, Dict[str, FrozenSet[str]]] = {
    "admin": {
        "staff": CRUD,
        "client": CRUD,
        "appointment": CRUD,
        "note": CRUD,
        "billing": CRUD,
        "message": CRUD,
        "setting": CRUD,
        "report": CRUD,
        "dashboard": CRUD,
        "audit": frozenset({"read"}),
    },
    "clinician": {
        "staff": frozenset({"read"}),
        "client": frozenset({"read", "create", "update"}),
        "appointment": frozenset({"read", "create", "update"}),
        "note": frozenset({"read", "create", "update"}),
        "billing": frozenset({"read", "create"}),
        "message": frozenset({"read", "create", "update"}),
        "setting": frozenset({"read"}),
        "report": frozenset({"read"}),
        "dashboard": frozenset({"read", "update"}),
        "audit": frozenset(),
    },
    "supervisor": {
        "staff": frozenset({"read"}),
        "client": frozenset({"read", "create", "update"}),
        "appointment": frozenset({"read", "create", "update"}),
        "note": frozenset({"read", "create", "update", "approve"}),
        "billing": frozenset({"read", "create", "update"}),
        "message": frozenset({"read", "create", "update"}),
        "setting": frozenset({"read"}),
        "report": frozenset({"read", "create"}),
        "dashboard": frozenset({"read", "update"}),
        "audit": frozenset({"read"}),
    },
    "scheduler": {
        "staff": frozenset({"read"}),
        "client": frozenset({"read", "create", "update"}),
        "appointment": CRUD,
        "note": frozenset({"read"}),
        "billing": frozenset(),
        "message": frozenset({"read", "create", "update"}),
        "setting": frozenset({"read"}),
        "report": frozenset({"read"}),
        "dashboard": frozenset({"read", "update"}),
        "audit": frozenset(),
    },
    "biller": {
        "staff": frozenset({"read"}),
        "client": frozenset({"read", "update"}),
        "appointment": frozenset({"read"}),
        "note": frozenset({"read"}),
        "billing": CRUD,
        "message": frozenset({"read", "create", "update"}),
        "setting": frozenset({"read"}),
        "report": frozenset({"read", "create"}),
        "dashboard": frozenset({"read", "update"}),
        "audit": frozenset(),
    },
}

ROLES = frozenset(ROLE_PERMISSIONS)
SENSITIVE_RESOURCES = frozenset({"client", "note", "billing"})


class AuditSink(Protocol):
    def log_event(self, action: str, description: str, module: str, severity: str = "info", **fields):
        ...


def allowed_actions(role: Optional[str], resource: str) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role or "", {}).get(resource, frozenset())


def has_permission(
    role: Optional[str],
    resource: str,
    action: str,
    audit: Optional[AuditSink] = None,
    user_id: Optional[str] = None,
) -> bool:
    """Return whether ``role`` may perform ``action`` on ``resource``.

    Unknown roles and resources are denied and reported as unauthorized
    access.  Decisions on client, note and billing data are always audited
    when an ``audit`` sink is supplied.
    """

    role_permissions = ROLE_PERMISSIONS.get(role or "")
    if role_permissions is None:
        logger.warning("rbac_unknown_role", role=role, resource=resource, action=action)
        if audit is not None:
            audit.log_event(
                "UNAUTHORIZED_ACCESS",
                f'User with unknown role "{role}" attempted to access {resource} with action {action}',
                "auth",
                "warning",
                user_id=user_id,
            )
        return False

    resource_permissions = role_permissions.get(resource)
    if resource_permissions is None:
        if audit is not None:
            audit.log_event(
                "UNAUTHORIZED_ACCESS",
                f'User attempted to access unauthorized resource "{resource}" with action {action}',
                "auth",
                "warning",
                user_id=user_id,
            )
        return False

    granted = action in resource_permissions
    if audit is not None and resource in SENSITIVE_RESOURCES:
        audit.log_event(
            "ACCESS_GRANTED" if granted else "ACCESS_DENIED",
            f"User {'granted' if granted else 'denied'} {action} access to {resource}",
            "auth",
            "info" if granted else "warning",
            user_id=user_id,
        )
    return granted


__all__ = [
    "ROLES",
    "ROLE_PERMISSIONS",
    "SENSITIVE_RESOURCES",
    "allowed_actions",
    "has_permission",
]
