"""Engine and session helpers for the MentalSpace database."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import DatabaseSettings, get_database_settings
from .models import Base


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """Let pysqlite honour ``SAVEPOINT`` by emitting ``BEGIN`` ourselves.

    Audit writes run inside ``Session.begin_nested`` and rely on this.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")

    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_database_settings()
    engine = create_engine(settings.url, **settings.engine_options())
    if settings.is_sqlite:
        enable_sqlite_savepoints(engine)
    return engine


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False, future=True)


def init_db(engine: Engine | None = None) -> None:
    """Create any missing tables on ``engine`` (defaults to the app engine)."""

    Base.metadata.create_all(bind=engine or get_engine())


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that commits on success."""

    session = get_sessionmaker()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Context manager yielding a session outside of request handling."""

    session = (factory or get_sessionmaker())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "DatabaseSettings",
    "enable_sqlite_savepoints",
    "get_database_settings",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_db",
    "session_scope",
]
