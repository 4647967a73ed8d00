"""
FastAPI Application Entry Point.

This is the main application file for the Church Finance Ledger Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from finance_backend.app.core.config import settings
from finance_backend.app.api.v1.router import router as api_v1_router
from finance_backend.app.db.session import engine
from finance_backend.app.core.exceptions import (
    AppException,
    StoreUnavailableError,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    store_exception_handler,
    generic_exception_handler
)
from finance_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from finance_backend.app.core.redis_client import ping_redis
from finance_backend.app.services.bootstrap import SchemaBootstrapper
from finance_backend.app.services.cache import build_balance_cache

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Bootstraps the ledger schema (tables, indexes, union view).
    2. Creates the balance cache and checks Redis when it backs the cache.
    3. Disposes the engine on shutdown.
    """
    app.state.bootstrapper = SchemaBootstrapper(engine)
    try:
        report = await app.state.bootstrapper.ensure()
        if not report.tables_ready:
            logger.error("Starting without a writable ledger schema: %s", report.error)
    except StoreUnavailableError:
        logger.exception("Database unavailable at startup; writes will retry bootstrap")

    app.state.balance_cache = build_balance_cache()
    redis_client = getattr(app.state.balance_cache.backend, "client", None)
    if redis_client is not None and not await ping_redis(redis_client):
        logger.warning("Redis unreachable at startup; balance reads will bypass the cache")

    yield

    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Account balances, ledger synchronization and bank reconciliation for church finance",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(SQLAlchemyError, store_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and ledger schema state
    """
    bootstrapper = getattr(app.state, "bootstrapper", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "ledger_schema_ready": bool(bootstrapper and bootstrapper.ready),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Church Finance Ledger API",
        "docs": "/docs",
        "health": "/health",
    }
