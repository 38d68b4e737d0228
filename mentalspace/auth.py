"""Authentication helpers for the MentalSpace API."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mentalspace.config import get_settings
from mentalspace.db.models import User
from mentalspace.rbac import ROLES
from mentalspace.time_utils import ensure_utc, utc_now

# Password hashing context using bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

LOCKOUT_THRESHOLD = 5
LOCKOUT_DURATION_SECONDS = 15 * 60


class AuthError(Exception):
    """Credentials were rejected; ``reason`` says why."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def hash_password(password: str) -> str:
    """Hash a plaintext password using a secure algorithm."""

    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify a plaintext password against a stored hash."""

    try:
        return pwd_context.verify(password, hashed)
    except (TypeError, ValueError):
        return False


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


def register_user(
    session: Session,
    email: str,
    password: str,
    role: str = "clinician",
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    """Create a staff account and return it.

    Raises :class:`ValueError` for an unknown role or a duplicate email.
    """

    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    if get_user_by_email(session, email) is not None:
        raise ValueError("A user with that email already exists")
    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    session.flush()
    return user


def authenticate_user(session: Session, email: str, password: str) -> User:
    """Validate credentials, applying the failed-attempt lockout.

    Returns the user on success and raises :class:`AuthError` otherwise.
    """

    user = get_user_by_email(session, email)
    if user is None or not user.is_active:
        raise AuthError("invalid_credentials", "Invalid credentials")

    now = utc_now()
    if user.account_locked_until and ensure_utc(user.account_locked_until) > now:
        raise AuthError("locked", "Account temporarily locked due to repeated failed logins")

    if verify_password(password, user.password_hash):
        user.failed_login_attempts = 0
        user.account_locked_until = None
        user.last_login = now
        session.flush()
        return user

    attempts = (user.failed_login_attempts or 0) + 1
    user.failed_login_attempts = attempts
    if attempts >= LOCKOUT_THRESHOLD:
        user.account_locked_until = now + timedelta(seconds=LOCKOUT_DURATION_SECONDS)
    session.flush()
    raise AuthError("invalid_credentials", "Invalid credentials")


def change_password(session: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise AuthError("invalid_credentials", "Password is incorrect")
    user.password_hash = hash_password(new_password)
    session.flush()


def create_access_token(user: User, *, expires_minutes: Optional[int] = None) -> str:
    """Create a signed JWT access token for ``user``."""

    settings = get_settings()
    minutes = expires_minutes or settings.access_token_expire_minutes
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "type": "access",
        "exp": utc_now() + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the token claims; raises ``jwt.PyJWTError`` when invalid."""

    settings = get_settings()
    data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    if data.get("type") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    return data


__all__ = [
    "AuthError",
    "LOCKOUT_DURATION_SECONDS",
    "LOCKOUT_THRESHOLD",
    "authenticate_user",
    "change_password",
    "create_access_token",
    "decode_access_token",
    "get_user_by_email",
    "hash_password",
    "pwd_context",
    "register_user",
    "verify_password",
]
