"""
Auth service FastAPI application.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from shared.events import BrokerConnection
from shared.logging import configure_logging

from .api import auth, users
from .container import cleanup_container, get_container
from .core.config import settings
from .core.database import check_connection, close_db_connections, engine
from .models.base import Base

configure_logging(settings.DEBUG)

logger = structlog.get_logger()


async def create_tables() -> None:
    """Create tables outside production, where migrations own the schema."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting auth service", version=settings.VERSION, environment=settings.ENVIRONMENT)

    try:
        if settings.ENVIRONMENT != "production":
            await create_tables()

        await get_container().initialize()
        logger.info("Dependency injection container initialized")

        yield

    finally:
        logger.info("Shutting down auth service")
        await cleanup_container()
        await close_db_connections()
        logger.info("Auth service shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    description="Clinical portal authentication service",
    version=settings.VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors without echoing submitted passwords."""
    errors = [
        {"loc": error.get("loc"), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("Validation error", errors=errors, path=request.url.path)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation error", "errors": errors}
    )


app.include_router(auth.router, prefix=settings.API_V1_STR)
app.include_router(users.router, prefix=settings.API_V1_STR)


def _broker_state() -> str:
    try:
        return get_container().get(BrokerConnection).state.value
    except ValueError:
        return "uninitialized"


@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check endpoint. A broker outage degrades but does not fail it."""
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "version": settings.VERSION,
        "broker": _broker_state()
    }


@app.get("/ready", tags=["health"])
async def readiness_check():
    """Readiness check with dependency validation."""
    checks = {
        "database": await check_connection(),
        "broker": _broker_state() == "connected"
    }
    ready = checks["database"]

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": checks,
            "service": settings.SERVICE_NAME,
            "version": settings.VERSION
        }
    )


def run() -> None:
    """Run the API server; reload only in debug."""
    uvicorn.run(
        "services.auth_service.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
        access_log=False  # request logging goes through structlog
    )


if __name__ == "__main__":
    run()
