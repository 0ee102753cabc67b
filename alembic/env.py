import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from app.db.base import Base  # noqa: E402
from app.models import donation_model, request_model, stock_model  # noqa: E402,F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def ledger_database_url() -> str:
    """DATABASE_URL wins over alembic.ini; plain postgres URLs get the asyncpg driver."""
    raw = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    url = make_url(raw)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+asyncpg")
    return url.render_as_string(hide_password=False)


def sync_driver_url(async_url: str) -> str:
    url = make_url(async_url)
    return url.set(drivername=url.get_backend_name()).render_as_string(hide_password=False)


def configure_and_run(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def migrate_online(url: str) -> None:
    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args = {
            "command_timeout": 60,
            "server_settings": {"application_name": "bloodstock_migration"},
        }

    engine = create_async_engine(url, poolclass=NullPool, connect_args=connect_args)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(configure_and_run)
    finally:
        await engine.dispose()


def migrate_offline(url: str) -> None:
    """Emit SQL for the ledger schema without a live connection."""
    context.configure(
        url=sync_driver_url(url),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    migrate_offline(ledger_database_url())
else:
    asyncio.run(migrate_online(ledger_database_url()))
