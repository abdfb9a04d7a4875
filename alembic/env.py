"""Migrations for the analysis store (order_analysis).

The source store is read-only and mapped on its own metadata, so it never
appears here. The URL comes from SQLALCHEMY_DATABASE_URL when set, otherwise
from ANALYSIS_DATABASE_URL (a local .env is honoured).
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from interchain_swap_analytics.storage.database import _normalize_async_database_url
from interchain_swap_analytics.storage.models import Base

VERSION_TABLE = "order_analysis_alembic_version"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

_url = os.environ.get("SQLALCHEMY_DATABASE_URL") or os.environ.get("ANALYSIS_DATABASE_URL")
if _url:
    config.set_main_option("sqlalchemy.url", _normalize_async_database_url(os.path.expandvars(_url)))


def _configure(**kwargs: Any) -> None:
    context.configure(
        target_metadata=Base.metadata,
        version_table=VERSION_TABLE,
        compare_type=True,
        **kwargs,
    )


def run_offline() -> None:
    """Emit SQL for the order_analysis schema without connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _apply(connection: Any) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    """Apply migrations over a throwaway async engine."""
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
