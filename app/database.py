import logging
import os
from typing import Any, Dict

from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config import settings
from app.db.base import Base

logger = logging.getLogger(__name__)

# Lambda (through Mangum) or Vercel; each invocation may land on a fresh container
IS_SERVERLESS = (
    os.getenv("VERCEL") == "1" or os.getenv("AWS_LAMBDA_FUNCTION_NAME") is not None
)


def engine_options(url: URL, serverless: bool) -> Dict[str, Any]:
    """Pool and driver options for the ledger database."""
    backend = url.get_backend_name()

    if backend == "sqlite":
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if serverless:
            options["poolclass"] = NullPool
        return options

    if serverless:
        # asyncpg prepared statements do not survive pgbouncer in transaction mode
        return {
            "poolclass": NullPool,
            "connect_args": {
                "timeout": 30,
                "command_timeout": 30,
                "statement_cache_size": 0,
                "server_settings": {"application_name": "bloodstock_lambda", "jit": "off"},
            },
        }

    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_recycle": settings.DATABASE_POOL_RECYCLE,
        "pool_pre_ping": True,
        "connect_args": {"server_settings": {"application_name": "bloodstock_api"}},
    }


database_url = make_url(settings.DATABASE_URL)

engine = create_async_engine(
    database_url,
    echo=settings.DEBUG and settings.ENVIRONMENT == "development",
    **engine_options(database_url, IS_SERVERLESS),
)

logger.info(
    f"Ledger database engine ready (backend={database_url.get_backend_name()}, "
    f"serverless={IS_SERVERLESS})"
)

async_session = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Register every mapped table on Base.metadata before create_all runs
from app.models import donation_model, request_model, stock_model  # noqa: E402,F401


async def init_db():
    """Create missing ledger tables. Production schemas go through alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ledger tables created")


async def close_db():
    try:
        await engine.dispose()
        logger.info("Database connections closed.")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
