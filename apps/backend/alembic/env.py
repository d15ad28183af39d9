"""Alembic environment for the finance_tracker schema."""

from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from finance_tracker import models  # noqa: E402,F401 - registers both tables on Base.metadata
from finance_tracker.core.config import settings  # noqa: E402
from finance_tracker.core.database import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    # Keep the application's finance_tracker loggers alive
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# FT_DATABASE_URL wins over alembic.ini
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)


def _context_options(url: str) -> dict:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        # SQLite cannot ALTER constraints in place
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_context_options(connection.engine.url.drivername))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
