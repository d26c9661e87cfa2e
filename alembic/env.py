import logging
from logging.config import fileConfig
import sys
from pathlib import Path

from sqlalchemy import pool
from alembic import context

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from config import get_settings  # noqa: E402
from database import Base, build_engine  # noqa: E402
import models  # noqa: E402,F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# `alembic -x url=...` migrates another database, e.g. a copy for testing
database_url = context.get_x_argument(as_dictionary=True).get(
    "url", get_settings().database_url
)
config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata

# SQLite can only alter columns through batch (copy-and-move) migrations
MIGRATION_OPTIONS = {"render_as_batch": True, "compare_type": True}


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = build_engine(database_url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata, **MIGRATION_OPTIONS
        )

        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()
    logger.info(f"migrations_applied: url={database_url}")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
