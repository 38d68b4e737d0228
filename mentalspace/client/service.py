"""Shared plumbing for audited workstation services."""

from __future__ import annotations

from typing import Any, Callable, Optional

from mentalspace.client.api import SecureApiClient
from mentalspace.client.audit import AuditEmitter
from mentalspace.db.models import AuditModule, AuditSeverity
from mentalspace.errors import MentalSpaceError


def error_text(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


class AuditedService:
    """Report an audit event before each API call and ``<ACTION>_ERROR`` when it fails."""

    audit_module: AuditModule = AuditModule.DOCUMENTATION
    entity_type: str = "note"

    def __init__(self, api: SecureApiClient, audit: AuditEmitter) -> None:
        self.api = api
        self.audit = audit

    def _audit(
        self,
        action: str,
        description: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> None:
        self.audit.log_event(
            action,
            description,
            self.audit_module,
            severity,
            entity_type=entity_type or self.entity_type,
            entity_id=entity_id,
            new_value=new_value,
        )

    def _call(
        self,
        action: str,
        description: str,
        error_label: str,
        func: Callable[[], Any],
        *,
        severity: AuditSeverity = AuditSeverity.INFO,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> Any:
        try:
            self._audit(
                action,
                description,
                severity,
                entity_type=entity_type,
                entity_id=entity_id,
                new_value=new_value,
            )
            return func()
        except MentalSpaceError as exc:
            self._audit(
                f"{action}_ERROR",
                f"Error {error_label}: {error_text(exc)}",
                AuditSeverity.WARNING,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            raise


__all__ = ["AuditedService", "error_text"]
