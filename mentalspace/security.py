"""Redaction and hashing helpers used before data reaches logs or audit trails."""

from __future__ import annotations

import hashlib
from typing import Any, Iterable, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset({"password", "ssn", "creditCard", "diagnosis"})

SENSITIVE_ENDPOINTS = (
    "/auth/login",
    "/auth/resetpassword",
    "/auth/updatepassword",
    "/clients",
    "/notes",
)

ENCRYPTED_BODY_PREFIXES = ("/auth/", "/clients/")

AUDITED_RESPONSE_PREFIXES = ("/auth/", "/clients/", "/notes/")


def hash_identifier(value: Optional[str]) -> Optional[str]:
    """Return a stable SHA256 hash prefix for identifiers."""

    if not value:
        return None
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return digest[:16]


def redact_sensitive(value: Any, fields: Iterable[str] = SENSITIVE_FIELDS) -> Any:
    """Return a copy of ``value`` with sensitive keys replaced by a marker.

    Only the top level of a mapping is inspected; nested payloads are left
    untouched.
    """

    if not isinstance(value, Mapping):
        return value
    blocked = set(fields)
    return {key: (REDACTED if key in blocked else item) for key, item in value.items()}


def _normalise(url: str) -> str:
    path = url.split("?", 1)[0]
    return path if path.startswith("/") else f"/{path}"


def is_sensitive_endpoint(url: str) -> bool:
    path = _normalise(url)
    return any(endpoint in path for endpoint in SENSITIVE_ENDPOINTS)


def requires_body_encryption(url: str) -> bool:
    path = _normalise(url)
    return any(prefix in path for prefix in ENCRYPTED_BODY_PREFIXES)


def audits_response(url: str) -> bool:
    path = _normalise(url)
    return any(prefix in path for prefix in AUDITED_RESPONSE_PREFIXES)


__all__ = [
    "AUDITED_RESPONSE_PREFIXES",
    "ENCRYPTED_BODY_PREFIXES",
    "REDACTED",
    "SENSITIVE_ENDPOINTS",
    "SENSITIVE_FIELDS",
    "audits_response",
    "hash_identifier",
    "is_sensitive_endpoint",
    "redact_sensitive",
    "requires_body_encryption",
]
