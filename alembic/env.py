import logging
import sys
from logging.config import fileConfig
from pathlib import Path
from typing import Optional

from sqlalchemy import pool
from alembic import context

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

logger = logging.getLogger("alembic.env")


def _ledger_url() -> str:
    """``alembic -x database_url=...`` overrides the configured ledger store."""
    from config import get_settings

    override: Optional[str] = context.get_x_argument(as_dictionary=True).get(
        "database_url"
    )
    return override or get_settings().database_url


def _ledger_metadata():
    from database import Base
    import models  # noqa: F401

    return Base.metadata


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url = _ledger_url()
config.set_main_option("sqlalchemy.url", database_url)
target_metadata = _ledger_metadata()


def run_migrations_offline() -> None:
    logger.info(f"ledger_migration: mode=offline url={database_url}")
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(database_url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    from database import build_engine

    # sqlite pragmas (WAL, foreign keys) match the app engine.
    engine = build_engine(database_url, poolclass=pool.NullPool)
    logger.info(f"ledger_migration: mode=online dialect={engine.dialect.name}")
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=connection.dialect.name == "sqlite",
                compare_type=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
