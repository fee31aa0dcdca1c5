"""
Alembic environment for HMS Nova Core.

Migrations always run on a synchronous engine. The async driver in
``DATABASE_URL`` is swapped for its sync counterpart, so the same settings
serve the app and the migration CLI.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, make_url

# registers every table on Base.metadata
import hmsnova.db.models  # noqa: F401
from hmsnova.config.settings import get_settings
from hmsnova.db.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# async driver -> sync driver (psycopg2 comes with the "postgres" extra)
_SYNC_DRIVERS = {
    "sqlite+aiosqlite": "sqlite",
    "postgresql+asyncpg": "postgresql+psycopg2",
}


def migration_url() -> str:
    """``-x db_url=...`` wins over settings; async drivers become sync ones."""
    raw = context.get_x_argument(as_dictionary=True).get("db_url") or str(
        get_settings().database_url
    )
    url = make_url(raw)
    driver = _SYNC_DRIVERS.get(url.drivername)
    if driver is not None:
        url = url.set(drivername=driver)
    return url.render_as_string(hide_password=False)


def _configure(**kwargs: object) -> None:
    url = migration_url()
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite can only ALTER through table copies
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=migration_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_on(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(migration_url())
    try:
        with engine.connect() as connection:
            _run_on(connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
