"""Alembic environment configuration."""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

# Import all models so their tables are visible to Alembic
import activity_ledger.db.models  # noqa: F401
from activity_ledger.db.base import Base

config = context.config
# Called from the app at startup: logging is already configured by structlog
if config.config_file_name is not None and "database_url" not in config.attributes:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    # Allow override via -x db_url=... on the CLI
    url = context.get_x_argument(as_dictionary=True).get("db_url")
    if url:
        return url
    if "database_url" in config.attributes:
        return str(config.attributes["database_url"])

    from activity_ledger.config.settings import get_settings

    return str(get_settings().database_url)


def get_sync_url() -> str:
    """Convert async driver URLs to sync equivalents for Alembic."""
    url = get_url()
    # aiosqlite → plain sqlite
    url = url.replace("+aiosqlite", "")
    # asyncpg → psycopg2 (Postgres)
    url = url.replace("+asyncpg", "")
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=get_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):  # type: ignore[no-untyped-def]
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations using a synchronous engine (safe from any context)."""
    engine = create_engine(get_sync_url())
    with engine.connect() as connection:
        do_run_migrations(connection)
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
