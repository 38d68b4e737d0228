"""Server-side persistence and querying of audit events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from prometheus_client import Counter
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mentalspace.db.models import AuditLogEntry, AuditModule, AuditSeverity, User
from mentalspace.time_utils import ensure_utc, isoformat

logger = structlog.get_logger(__name__)

AUDIT_EVENTS_TOTAL = Counter(
    "mentalspace_audit_events_total",
    "Audit events persisted by the API",
    ("module", "severity"),
)

AUDIT_EVENTS_FAILED = Counter(
    "mentalspace_audit_events_failed_total",
    "Audit events that could not be persisted",
)

MAX_PAGE_SIZE = 200


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def record_audit_event(
    session: Session,
    action: str,
    description: str,
    module: AuditModule | str,
    severity: AuditSeverity | str = AuditSeverity.INFO,
    *,
    user: Optional[User] = None,
    user_id: Optional[int] = None,
    entity_id: Any = None,
    entity_type: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    client_timestamp: Optional[str] = None,
) -> Optional[AuditLogEntry]:
    """Persist an entry into the audit_log table (best effort).

    Failures are logged and swallowed inside a savepoint so the caller's
    transaction is unaffected.
    """

    module = AuditModule(module)
    severity = AuditSeverity(severity)
    entry = AuditLogEntry(
        action=action,
        description=description,
        module=module,
        severity=severity,
        user_id=user.id if user is not None else user_id,
        username=user.email if user is not None else None,
        entity_id=_stringify(entity_id),
        entity_type=entity_type,
        old_value=_stringify(old_value),
        new_value=_stringify(new_value),
        ip_address=ip_address,
        user_agent=user_agent,
        client_timestamp=client_timestamp,
    )
    try:
        with session.begin_nested():
            session.add(entry)
    except SQLAlchemyError:
        AUDIT_EVENTS_FAILED.inc()
        logger.warning("audit_log_insert_failed", action=action, exc_info=True)
        return None
    AUDIT_EVENTS_TOTAL.labels(module.value, severity.value).inc()
    if severity is AuditSeverity.CRITICAL:
        logger.error("audit_event_critical", action=action, description=description)
    return entry


def list_audit_logs(
    session: Session,
    *,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    module: Optional[AuditModule] = None,
    severity: Optional[AuditSeverity] = None,
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[AuditLogEntry], int]:
    """Return one page of audit entries (newest first) and the total count."""

    conditions = []
    if start_date is not None:
        conditions.append(AuditLogEntry.timestamp >= ensure_utc(start_date))
    if end_date is not None:
        conditions.append(AuditLogEntry.timestamp <= ensure_utc(end_date))
    if user_id is not None:
        conditions.append(AuditLogEntry.user_id == user_id)
    if action:
        conditions.append(AuditLogEntry.action == action)
    if module is not None:
        conditions.append(AuditLogEntry.module == module)
    if severity is not None:
        conditions.append(AuditLogEntry.severity == severity)
    if entity_id:
        conditions.append(AuditLogEntry.entity_id == entity_id)
    if entity_type:
        conditions.append(AuditLogEntry.entity_type == entity_type)

    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    total = session.execute(
        select(func.count()).select_from(AuditLogEntry).where(*conditions)
    ).scalar_one()
    rows = (
        session.execute(
            select(AuditLogEntry)
            .where(*conditions)
            .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def serialize_audit_entry(entry: AuditLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": isoformat(entry.timestamp),
        "clientTimestamp": entry.client_timestamp,
        "userId": entry.user_id,
        "username": entry.username,
        "action": entry.action,
        "description": entry.description,
        "module": AuditModule(entry.module).value,
        "severity": AuditSeverity(entry.severity).value,
        "entityId": entry.entity_id,
        "entityType": entry.entity_type,
        "oldValue": entry.old_value,
        "newValue": entry.new_value,
        "ipAddress": entry.ip_address,
        "userAgent": entry.user_agent,
    }


__all__ = [
    "AUDIT_EVENTS_FAILED",
    "AUDIT_EVENTS_TOTAL",
    "MAX_PAGE_SIZE",
    "list_audit_logs",
    "record_audit_event",
    "serialize_audit_entry",
]
