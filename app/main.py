from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from sqladmin import Admin

from app.admin.donation_admin import DonationAdmin
from app.admin.request_admin import BloodRequestAdmin
from app.admin.stock_admin import BloodStockAdmin, StockAlertAdmin, StockMovementAdmin
from app.config import settings
from app.database import IS_SERVERLESS, close_db, engine, init_db
from app.dependencies import get_db
from app.middlewares.logging_middleware import LoggingMiddleware
from app.routes import router as api_router
from app.utils.exceptions import LedgerError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application startup and shutdown events.
    """
    logger.info("Application starting up...")
    logger.info(f"Serverless mode: {IS_SERVERLESS}")

    # Production schemas are managed by alembic
    if settings.ENVIRONMENT != "production":
        try:
            await init_db()
        except Exception as e:
            logger.error(f"Database initialization failed: {e}", exc_info=True)
            raise

    yield

    logger.info("Application shutting down...")
    await close_db()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={
                "extra_fields": {
                    "error_type": type(exc).__name__,
                    "status_code": exc.status_code,
                    "path": str(request.url.path),
                    **exc.details,
                }
            },
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        logger.warning(
            f"Concurrent update rejected on {request.url.path}",
            extra={"extra_fields": {"error_type": "StaleDataError"}},
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": "Concurrent update, retry", "error": "StaleDataError"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "error": "ValueError"},
        )


def register_admin(app: FastAPI) -> None:
    admin = Admin(app, engine, base_url=settings.ADMIN_PATH)
    admin.add_view(BloodStockAdmin)
    admin.add_view(StockMovementAdmin)
    admin.add_view(StockAlertAdmin)
    admin.add_view(BloodRequestAdmin)
    admin.add_view(DonationAdmin)


def create_application() -> FastAPI:
    """Create the FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.VERSION,
        docs_url=settings.DOCS_URL,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
            "X-Actor-Id",
        ],
        expose_headers=["Content-Length", "Content-Type", "X-Request-ID"],
        max_age=600,
    )

    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    # SQLAdmin keeps a session per request, which does not suit serverless
    if settings.ENABLE_ADMIN and not IS_SERVERLESS:
        register_admin(app)
    elif settings.ENABLE_ADMIN:
        logger.warning("SQLAdmin disabled in serverless mode")

    @app.get("/")
    def read_root():
        return {
            "status": "ok",
            "serverless": IS_SERVERLESS,
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        """Health check with database connectivity test"""
        try:
            await db.execute(select(1))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "database": "disconnected", "error": str(e)},
            )

    return app


# Create and expose the FastAPI app
app = create_application()
