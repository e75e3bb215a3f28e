"""
Alembic environment configuration for activity sync migrations.

The database URL comes from DATABASE_URL or SQLITE_PATH, the same way the
service resolves it, and falls back to ``sqlalchemy.url`` in alembic.ini.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import engine_from_config, pool
from alembic import context

# Add project root to path to import models
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from activity_store.config import DatabaseConfig
from activity_store.models import Base

# This is the Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url():
    """Get database URL from the environment, else from alembic.ini."""
    if os.environ.get('DATABASE_URL') or os.environ.get('SQLITE_PATH'):
        return DatabaseConfig().url
    return config.get_main_option("sqlalchemy.url") or DatabaseConfig().url


def run_migrations_offline():
    """Run migrations in 'offline' mode, emitting SQL without a connection."""
    url = get_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite:"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode against a live connection."""
    config_section = config.get_section(config.config_ini_section)
    if config_section is None:
        config_section = {}

    database_url = get_database_url()
    config_section['sqlalchemy.url'] = database_url

    connectable = engine_from_config(
        config_section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # SQLite cannot ALTER most constraints in place
            render_as_batch=database_url.startswith("sqlite:"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
