"""Alembic environment for the MentalSpace schema."""

from __future__ import annotations

from alembic import context
import sqlalchemy as sa
from sqlalchemy import pool

from mentalspace.db.config import POOL_ENV_VARS, DatabaseSettings, get_database_settings
from mentalspace.db.models import Base

config = context.config
target_metadata = Base.metadata


def _resolve_settings() -> DatabaseSettings:
    # -x overrides and test harnesses set sqlalchemy.url directly
    explicit = config.get_main_option("sqlalchemy.url")
    resolved = DatabaseSettings(url=explicit) if explicit else get_database_settings()
    config.set_main_option("sqlalchemy.url", resolved.url)
    return resolved


settings = _resolve_settings()


def run_migrations_offline() -> None:
    context.configure(url=settings.url, target_metadata=target_metadata, literal_binds=True, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    options = {key: value for key, value in settings.engine_options().items() if key not in POOL_ENV_VARS}
    engine = sa.create_engine(settings.url, poolclass=pool.NullPool, **options)

    with engine.begin() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=settings.is_sqlite,
        )
        context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
