"""Alembic environment for the Lanforge schema.

The database URL comes from ``Lanforge.config`` (init > .env > environment >
config.toml), after ``.env.local`` has been loaded over the process
environment for developer overrides. Async driver URLs are turned back into
their sync counterparts because Alembic runs synchronously.
"""

import pathlib
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine

from Lanforge import models  # noqa: F401
from Lanforge.config import load_settings
from Lanforge.db import Base

_LOCAL_ENV = pathlib.Path(__file__).resolve().parents[1] / ".env.local"
if _LOCAL_ENV.exists():
    load_dotenv(dotenv_path=_LOCAL_ENV, override=True)

_SYNC_DRIVERS = {
    "+aiosqlite": "",
    "+asyncpg": "+psycopg",
}

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata


def sync_url() -> str:
    url = load_settings().database_url
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver, 1)
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def run_migrations_offline() -> None:
    context.configure(url=sync_url(), target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(sync_url())
    with engine.connect() as connection:
        # SQLite cannot ALTER most constraints in place
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
