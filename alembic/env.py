"""
Alembic environment for the users schema.

Online runs reuse the application's engine (same driver, sslmode policy and
masked URL logging as the API); offline runs render SQL from the same URL.
"""
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlmodel import SQLModel

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.db import base  # noqa: F401,E402  registers the User table
from app.db.session import _build_db_url, get_engine  # noqa: E402

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

target_metadata = SQLModel.metadata
MIGRATION_OPTS = {"target_metadata": target_metadata, "compare_type": True}


def migrate_offline() -> None:
    context.configure(
        url=_build_db_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online() -> None:
    with get_engine().connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
