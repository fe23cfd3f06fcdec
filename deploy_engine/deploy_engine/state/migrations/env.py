"""Alembic environment configuration for the deployment state store.

Supports both **online** (connected) and **offline** (SQL-generation) modes.
The database URL is resolved from the ``ALEMBIC_DATABASE_URL`` environment
variable, then ``alembic.ini``, then ``MQDEPLOY_DATABASE_URL`` via settings.

The ``target_metadata`` is bound to ``deploy_engine.state.tables.Base`` so
that ``--autogenerate`` can detect drift against the ORM definitions.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from deploy_engine.config import load_settings
from deploy_engine.state.tables import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _get_database_url() -> str:
    """Resolve the database URL and convert async drivers to sync ones.

    Alembic's ``MigrationContext`` needs a synchronous engine, so
    ``+asyncpg`` becomes ``+psycopg`` and ``+aiosqlite`` is dropped.
    """
    url = os.environ.get("ALEMBIC_DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        url = load_settings().database_url
        logger.info("Using settings database URL: %s", url[:40] + "...")

    if url.startswith("postgresql+asyncpg://"):
        url = "postgresql+psycopg://" + url[len("postgresql+asyncpg://") :]
    elif url.startswith("sqlite+aiosqlite://"):
        url = "sqlite://" + url[len("sqlite+aiosqlite://") :]
    return url


def run_migrations_offline() -> None:
    """Emit migration SQL without a live database."""
    context.configure(
        url=_get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database inside a transaction."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = _get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
