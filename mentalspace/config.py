"""Runtime configuration resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir

APP_NAME = "MentalSpace"

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_SESSION_TIMEOUT_MINUTES = 30
DEFAULT_CLIENT_VERSION = "1.0.0"
_DEVELOPMENT_JWT_SECRET = "mentalspace-development-secret"
_DEVELOPMENT_ENCRYPTION_KEY = "mentalspace-development-encryption-key"


class ConfigurationError(RuntimeError):
    """Raised when the environment is missing required configuration."""


@dataclass(frozen=True)
class Settings:
    """Resolved settings shared by the API server and the client toolkit."""

    environment: str
    log_level: str
    jwt_secret: str
    jwt_algorithm: str
    access_token_expire_minutes: int
    encryption_key: str
    api_url: str
    request_timeout: float
    session_timeout_minutes: int
    client_version: str
    data_dir: Path

    @property
    def is_production(self) -> bool:
        return self.environment in {"production", "prod"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be a number; got {raw!r}") from exc


def _resolve_secret(name: str, fallback: str, environment: str) -> str:
    value: Optional[str] = os.getenv(name)
    if value:
        return value
    if environment in {"production", "prod"}:
        raise ConfigurationError(f"{name} must be set in production")
    return fallback


def default_data_dir() -> Path:
    override = os.getenv("MENTALSPACE_DATA_DIR")
    if override:
        path = Path(override).expanduser()
    else:
        path = Path(user_data_dir(APP_NAME, APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the active settings derived from the environment."""

    environment = os.getenv("ENVIRONMENT", "development").strip().lower()
    return Settings(
        environment=environment,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        jwt_secret=_resolve_secret("JWT_SECRET", _DEVELOPMENT_JWT_SECRET, environment),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=_get_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 8),
        encryption_key=_resolve_secret(
            "MENTALSPACE_ENCRYPTION_KEY", _DEVELOPMENT_ENCRYPTION_KEY, environment
        ),
        api_url=os.getenv("MENTALSPACE_API_URL", DEFAULT_API_URL).rstrip("/"),
        request_timeout=_get_float("MENTALSPACE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        session_timeout_minutes=_get_int(
            "MENTALSPACE_SESSION_TIMEOUT_MINUTES", DEFAULT_SESSION_TIMEOUT_MINUTES
        ),
        client_version=os.getenv("MENTALSPACE_CLIENT_VERSION", DEFAULT_CLIENT_VERSION),
        data_dir=default_data_dir(),
    )


__all__ = ["APP_NAME", "ConfigurationError", "Settings", "default_data_dir", "get_settings"]
