"""Best-effort audit emitter for client-side actions.

Events are posted to ``/auditlogs`` through an injected transport.  A send
that fails is parked in :class:`FailedAuditQueue`, a ring buffer persisted
under ``failedAuditLogs`` and capped at 100 entries (oldest dropped first),
and can be replayed later with :meth:`AuditEmitter.retry_failed_logs`.

Nothing in this module raises into the caller when delivery fails.  A replay
may deliver an event the server already stored; duplicates are accepted.
"""

from __future__ import annotations

import functools
import json
import platform
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, TypeVar

import requests
import structlog

from mentalspace.db.models import AuditModule, AuditSeverity
from mentalspace.storage import KeyValueStorage
from mentalspace.time_utils import Clock, isoformat, utc_now

logger = structlog.get_logger(__name__)

FAILED_AUDIT_LOGS_KEY = "failedAuditLogs"
FAILED_AUDIT_LOGS_CAPACITY = 100

T = TypeVar("T")


class AuditTransport(Protocol):
    def send(self, payload: Mapping[str, Any]) -> Any:
        ...

    def query(self, params: Mapping[str, Any]) -> Any:
        ...


class FailedAuditQueue:
    """Ring buffer of undelivered audit payloads kept in local storage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = FAILED_AUDIT_LOGS_KEY,
        capacity: int = FAILED_AUDIT_LOGS_CAPACITY,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.storage = storage
        self.key = key
        self.capacity = capacity
        self._lock = threading.Lock()

    def _read(self) -> List[Dict[str, Any]]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("failed_audit_queue_corrupted", key=self.key)
            return []
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, dict)]

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        self.storage.set_item(self.key, json.dumps(entries[-self.capacity:]))

    def entries(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._read()

    def __len__(self) -> int:
        return len(self.entries())

    def enqueue(self, payload: Mapping[str, Any]) -> None:
        self.extend([dict(payload)])

    def extend(self, payloads: List[Dict[str, Any]]) -> None:
        with self._lock:
            entries = self._read()
            entries.extend(payloads)
            self._write(entries)

    def discard(self, delivered: List[Dict[str, Any]]) -> None:
        """Drop ``delivered`` payloads; everything else keeps its place."""

        if not delivered:
            return
        with self._lock:
            outstanding = list(delivered)
            kept: List[Dict[str, Any]] = []
            for entry in self._read():
                if entry in outstanding:
                    outstanding.remove(entry)
                else:
                    kept.append(entry)
            self._write(kept)


class HttpAuditTransport:
    """Send audit payloads straight to the API with ``requests``.

    The transport deliberately bypasses :class:`~mentalspace.client.api.SecureApiClient`
    so that auditing a request never triggers another audited request.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]] = lambda: None,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.http = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def send(self, payload: Mapping[str, Any]) -> Any:
        resp = self.http.post(
            f"{self.base_url}/auditlogs",
            json=dict(payload),
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json() if resp.content else None

    def query(self, params: Mapping[str, Any]) -> Any:
        resp = self.http.get(
            f"{self.base_url}/auditlogs",
            params={key: value for key, value in params.items() if value is not None},
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()


def default_user_agent() -> str:
    from mentalspace import __version__

    return f"mentalspace-client/{__version__} python/{platform.python_version()}"


@dataclass
class RetryResult:
    success: bool
    message: str
    retried_count: int = 0
    remaining_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "retriedCount": self.retried_count,
            "remainingCount": self.remaining_count,
        }


class AuditEmitter:
    def __init__(
        self,
        transport: AuditTransport,
        queue: FailedAuditQueue,
        *,
        clock: Clock = utc_now,
        user_agent: Optional[str] = None,
        user_id_provider: Callable[[], Optional[str]] = lambda: None,
    ) -> None:
        self.transport = transport
        self.queue = queue
        self.clock = clock
        self.user_agent = user_agent or default_user_agent()
        self.user_id_provider = user_id_provider

    def client_info(self) -> Dict[str, Any]:
        return {
            "ipAddress": "client-side",
            "userAgent": self.user_agent,
            "timestamp": isoformat(self.clock()),
        }

    def build_payload(
        self,
        action: str,
        description: str,
        module: AuditModule | str,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        *,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": action,
            "description": description,
            "module": AuditModule(module).value,
            "severity": AuditSeverity(severity).value,
        }
        optional = {
            "userId": user_id,
            "entityId": entity_id,
            "entityType": entity_type,
            "oldValue": old_value,
            "newValue": new_value,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        payload.update(self.client_info())
        return payload

    def log_event(
        self,
        action: str,
        description: str,
        module: AuditModule | str,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        **fields: Any,
    ) -> Optional[Any]:
        """Send an audit event, queueing it locally if delivery fails.

        Returns the transport response, or ``None`` when the event was queued
        or could not be built.
        """

        try:
            payload = self.build_payload(action, description, module, severity, **fields)
        except (TypeError, ValueError):
            logger.warning("audit_event_invalid", action=action, exc_info=True)
            return None
        try:
            return self.transport.send(payload)
        except Exception:
            logger.warning("audit_log_write_failed", action=action, exc_info=True)
        try:
            self.queue.enqueue(payload)
        except (OSError, TypeError, ValueError):
            logger.error("audit_log_queue_failed", action=action, exc_info=True)
        return None

    def retry_failed_logs(self) -> Dict[str, Any]:
        """Replay every queued event once, keeping the ones that still fail.

        Payloads leave the queue only after the transport accepted them, so
        an interrupted retry never loses events.
        """

        pending = self.queue.entries()
        if not pending:
            return RetryResult(True, "No failed logs to retry").to_dict()

        delivered: List[Dict[str, Any]] = []
        try:
            for payload in pending:
                try:
                    self.transport.send(payload)
                except Exception:
                    continue
                delivered.append(payload)
        finally:
            self.queue.discard(delivered)
        retried = len(delivered)
        remaining = len(pending) - retried
        logger.info("audit_log_retry_complete", retried=retried, remaining=remaining)
        return RetryResult(
            True,
            f"Retried {retried} logs, {remaining} logs still pending",
            retried,
            remaining,
        ).to_dict()

    def get_audit_logs(self, **filters: Any) -> Any:
        """Query persisted audit logs (start_date, end_date, user_id, action,
        module, severity, entity_id, entity_type, page, limit)."""

        params = {_camel(key): value for key, value in filters.items()}
        return self.transport.query(params)

    def with_audit_logging(
        self,
        func: Callable[..., T],
        *,
        action: str,
        description: str,
        module: AuditModule | str,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        get_entity_info: Optional[Callable[..., Mapping[str, Any]]] = None,
        get_value_changes: Optional[Callable[..., Mapping[str, Any]]] = None,
    ) -> Callable[..., T]:
        """Wrap ``func`` so each call is followed by a success or failure event.

        ``get_entity_info`` and ``get_value_changes`` receive the call's
        arguments and return ``entity_id``/``entity_type`` and
        ``old_value``/``new_value`` respectively.  Exceptions from ``func``
        are re-raised after logging.
        """

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            fields: Dict[str, Any] = {"user_id": self.user_id_provider()}
            if get_entity_info is not None:
                fields.update(get_entity_info(*args, **kwargs))
            if get_value_changes is not None:
                fields.update(get_value_changes(*args, **kwargs))
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                self.log_event(
                    action,
                    f"{description} - Failed: {exc}",
                    module,
                    AuditSeverity.WARNING,
                    **fields,
                )
                raise
            self.log_event(action, f"{description} - Success", module, severity, **fields)
            return result

        return wrapper


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


__all__ = [
    "AuditEmitter",
    "AuditTransport",
    "FAILED_AUDIT_LOGS_CAPACITY",
    "FAILED_AUDIT_LOGS_KEY",
    "FailedAuditQueue",
    "HttpAuditTransport",
    "RetryResult",
    "default_user_agent",
]
