"""Exception hierarchy raised by the client toolkit."""

from __future__ import annotations

from typing import Any, Optional


class MentalSpaceError(Exception):
    """Base class for client-side failures."""


class EncryptionError(MentalSpaceError):
    """A cipher operation failed; no partial result is returned."""


class ApiError(MentalSpaceError):
    """An HTTP call to the MentalSpace API did not succeed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
        redirect_to: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.redirect_to = redirect_to


class ValidationError(ApiError):
    """The server rejected the request body (400/422)."""


class AuthenticationError(ApiError):
    """The bearer token is missing, invalid or expired (401)."""


class AuthorizationError(ApiError):
    """The authenticated user lacks the required permission (403)."""


class NotFoundError(ApiError):
    """The requested resource does not exist (404)."""


class ServerError(ApiError):
    """The server failed to process the request (5xx)."""


class NetworkError(ApiError):
    """The request never produced a response (timeout, DNS, refused)."""


__all__ = [
    "ApiError",
    "AuthenticationError",
    "AuthorizationError",
    "EncryptionError",
    "MentalSpaceError",
    "NetworkError",
    "NotFoundError",
    "ServerError",
    "ValidationError",
]
