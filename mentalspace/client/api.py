"""HTTP client for the MentalSpace API.

Every request carries the client version, an anti-CSRF marker, the bearer
token when one is stored, a request timestamp and a random request id.
Requests to sensitive endpoints are audit-logged with sensitive fields
redacted, and bodies bound for ``/auth/`` or ``/clients/`` are replaced by
``{"encryptedData": <ciphertext>}``.

Failures are mapped onto :mod:`mentalspace.errors`.  A 401 clears the stored
token and a 403 is reported; both carry the page the UI should move to in
``redirect_to``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import requests
import structlog

from mentalspace.client.audit import AuditEmitter
from mentalspace.client.session import SessionContext
from mentalspace.db.models import AuditModule, AuditSeverity
from mentalspace.encryption import Encryptor, generate_token
from mentalspace.errors import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from mentalspace.security import (
    audits_response,
    is_sensitive_endpoint,
    redact_sensitive,
    requires_body_encryption,
)
from mentalspace.time_utils import isoformat, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
LOGIN_REDIRECT = "/login?session=expired"
UNAUTHORIZED_REDIRECT = "/unauthorized"
EXPECTED_SECURITY_HEADERS = ("Strict-Transport-Security", "X-Content-Type-Options", "X-Frame-Options")


class SecureApiClient:
    """Thin wrapper around :class:`requests.Session` with auditing and error mapping."""

    def __init__(
        self,
        session_ctx: SessionContext,
        audit: AuditEmitter,
        encryptor: Encryptor,
        *,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client_version: str = "1.0.0",
        http: Optional[requests.Session] = None,
    ) -> None:
        self.session_ctx = session_ctx
        self.audit = audit
        self.encryptor = encryptor
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client_version = client_version
        self.http = http or requests.Session()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Client-Version": self.client_version,
            "X-Requested-With": "XMLHttpRequest",
            "X-Request-Timestamp": isoformat(utc_now()) or "",
            "X-Request-ID": generate_token(16),
        }
        token = self.session_ctx.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _prepare_body(self, path: str, body: Any) -> Any:
        if body is None or not is_sensitive_endpoint(path):
            return body
        self.audit.log_event(
            "API_REQUEST",
            f"API request to {path}",
            AuditModule.AUTH,
            entity_type="api",
            entity_id=path,
            new_value=json.dumps(redact_sensitive(body), default=str),
        )
        if requires_body_encryption(path):
            return {"encryptedData": self.encryptor.encrypt_object(body)}
        return body

    def _check_security_headers(self, path: str, response: requests.Response) -> None:
        missing = [header for header in EXPECTED_SECURITY_HEADERS if not response.headers.get(header)]
        if missing:
            logger.warning("security_headers_missing", path=path, missing=missing)

    @staticmethod
    def _error_message(response: requests.Response, fallback: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return fallback
        if isinstance(body, Mapping):
            message = body.get("message")
            if not message and isinstance(body.get("error"), Mapping):
                message = body["error"].get("message")
            if message:
                return str(message)
        return fallback

    def _raise_for_status(self, path: str, response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if status == 401:
            self.session_ctx.clear_token()
            self.audit.log_event(
                "AUTHENTICATION_FAILURE",
                "Authentication token expired or invalid",
                AuditModule.AUTH,
                AuditSeverity.WARNING,
            )
            raise AuthenticationError(
                self._error_message(response, "Your session has expired. Please log in again."),
                status_code=status,
                payload=payload,
                redirect_to=LOGIN_REDIRECT,
            )
        if status == 403:
            self.audit.log_event(
                "AUTHORIZATION_FAILURE",
                f"User attempted to access forbidden resource: {path}",
                AuditModule.AUTH,
                AuditSeverity.WARNING,
            )
            raise AuthorizationError(
                self._error_message(response, "You do not have permission to perform this action."),
                status_code=status,
                payload=payload,
                redirect_to=UNAUTHORIZED_REDIRECT,
            )
        if status >= 500:
            message = self._error_message(response, "The server encountered an error. Please try again later.")
            self.audit.log_event(
                "SERVER_ERROR",
                f"Server error occurred: {message}",
                AuditModule.AUTH,
                AuditSeverity.CRITICAL,
                entity_type="api",
                entity_id=path,
            )
            raise ServerError(message, status_code=status, payload=payload)
        if status == 404:
            raise NotFoundError(
                self._error_message(response, "The requested resource was not found."),
                status_code=status,
                payload=payload,
            )
        if status in (400, 409, 422, 423):
            raise ValidationError(
                self._error_message(response, "The request could not be processed."),
                status_code=status,
                payload=payload,
            )
        raise ApiError(
            self._error_message(response, f"Request failed with status {status}"),
            status_code=status,
            payload=payload,
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        unwrap: bool = True,
    ) -> Any:
        """Send a request and return the decoded body.

        With ``unwrap`` the ``data`` member of the success envelope is
        returned instead of the whole body.
        """

        url = self._url(path)
        relative = urlparse(url).path
        body = self._prepare_body(relative, json_body)
        try:
            response = self.http.request(
                method,
                url,
                json=body,
                params={key: value for key, value in (params or {}).items() if value is not None} or None,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("api_request_failed", method=method, path=relative, error=str(exc))
            raise NetworkError(
                "Unable to reach the server. Please check your connection.",
                payload={"error": str(exc)},
            ) from exc

        self._raise_for_status(relative, response)
        self._check_security_headers(relative, response)
        if audits_response(relative):
            self.audit.log_event(
                "API_RESPONSE",
                f"Received response from {relative}",
                AuditModule.AUTH,
                entity_type="api",
                entity_id=relative,
            )

        if not response.content:
            return None
        try:
            decoded = response.json()
        except ValueError as exc:
            raise ApiError("The server returned an invalid response.", status_code=response.status_code) from exc
        if unwrap and isinstance(decoded, Mapping) and "data" in decoded:
            return decoded["data"]
        return decoded

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json_body: Any = None, **kwargs: Any) -> Any:
        return self.request("POST", path, json_body=json_body, **kwargs)

    def put(self, path: str, json_body: Any = None, **kwargs: Any) -> Any:
        return self.request("PUT", path, json_body=json_body, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate and store the returned bearer token."""

        body = self.post("/auth/login", {"email": email, "password": password}, unwrap=False)
        token = body.get("token") if isinstance(body, Mapping) else None
        if not token:
            raise AuthenticationError("Login response did not include a token")
        self.session_ctx.set_token(token)
        self.session_ctx.record_activity()
        return body.get("data") or {}

    def logout(self) -> None:
        self.session_ctx.clear_token()


__all__ = [
    "DEFAULT_TIMEOUT",
    "EXPECTED_SECURITY_HEADERS",
    "LOGIN_REDIRECT",
    "SecureApiClient",
    "UNAUTHORIZED_REDIRECT",
]
