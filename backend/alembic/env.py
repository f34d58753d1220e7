"""Alembic environment configuration; migrations run on a synchronous engine."""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

from portfolio.config.settings import get_settings
from portfolio.db.base import Base

# Import all models so their tables are visible to Alembic
import portfolio.db.models  # noqa: F401

config = context.config
if config.config_file_name is not None and not config.attributes.get("db_url"):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def get_url() -> str:
    # Precedence: -x db_url=... on the CLI, the URL handed over by the app, settings
    url = context.get_x_argument(as_dictionary=True).get("db_url")
    if url:
        return url
    url = config.attributes.get("db_url")
    if url:
        return str(url)
    return str(get_settings().database_url)


def get_sync_url() -> str:
    """Convert async driver URLs to sync equivalents for Alembic."""
    url = get_url()
    url = url.replace("+aiosqlite", "")
    url = url.replace("+asyncpg", "")
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=get_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):  # type: ignore[no-untyped-def]
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(get_sync_url())
    with engine.connect() as connection:
        do_run_migrations(connection)
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
