"""Database configuration helpers.

The EHR defaults to a SQLite file in the data directory.  Deployments point
``MENTALSPACE_DATABASE_URL`` (or ``DATABASE_URL``) at PostgreSQL; bare
``postgres://`` URLs are rewritten to the psycopg 3 driver.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from mentalspace.config import default_data_dir

SQLITE_FILENAME = "mentalspace.db"

# engine option -> environment variable; ignored for SQLite
POOL_ENV_VARS = {
    "pool_size": "DB_POOL_SIZE",
    "max_overflow": "DB_MAX_OVERFLOW",
    "pool_timeout": "DB_POOL_TIMEOUT",
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DatabaseSettings:
    """Resolved database configuration for the application."""

    url: str
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql", "postgres"))

    def engine_options(self) -> Dict[str, object]:
        """Keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.echo, "future": True}
        if self.is_sqlite:
            # sessions are handed across FastAPI's threadpool
            options["connect_args"] = {"check_same_thread": False}
            return options

        for option, env_name in POOL_ENV_VARS.items():
            value = _get_int_env(env_name)
            if value is not None:
                options[option] = value
        options["pool_pre_ping"] = True
        if self.is_postgres:
            options["connect_args"] = {"options": "-c timezone=UTC"}
        return options


def _normalise_postgres_url(url: str) -> str:
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def _sqlite_file(path: str | os.PathLike[str]) -> Path:
    target = Path(path).expanduser()
    if target.is_dir():
        target = target / SQLITE_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def _get_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """Return the active database settings derived from the environment."""

    echo = os.getenv("DB_ECHO", "").lower() in _TRUTHY
    url = os.getenv("MENTALSPACE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return DatabaseSettings(url=_normalise_postgres_url(url), echo=echo)

    db_path = os.getenv("MENTALSPACE_DB_PATH")
    sqlite_path = _sqlite_file(db_path) if db_path else default_data_dir() / SQLITE_FILENAME
    return DatabaseSettings(url=f"sqlite:///{sqlite_path}", echo=echo)


__all__ = ["DatabaseSettings", "POOL_ENV_VARS", "SQLITE_FILENAME", "get_database_settings"]
