"""FastAPI application for the OTP Gateway."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from otpgate import __version__
from otpgate.core.config.settings import get_settings
from otpgate.core.exceptions import OTPGatewayError
from otpgate.core.logger import setup_structured_logging
from otpgate.models.db_factory import DatabaseFactory
from otpgate.services.container import ServiceContainer
from web.exception_handlers import (
    domain_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from web.middleware import CorrelationMiddleware, SecurityHeadersMiddleware
from web.routes import api_router, auth_router, health_router, session_router
from web.routes.auth import limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown.

    Handles:
    - Logging setup and database connection on startup
    - Service container (sessions, health monitor, OTP purge) start and stop
    - Database cleanup on shutdown

    A container injected through ``create_app`` is owned by the caller and is
    neither started nor stopped here.
    """
    if getattr(app.state, "container", None) is not None:
        yield
        return

    settings = get_settings()
    setup_structured_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info(f"OTP Gateway {__version__} starting up ({settings.env})...")

    try:
        db = await DatabaseFactory.ensure_connected(settings.database_url, settings.db_pool_size)
        logger.info("Database connection established via DatabaseFactory")
    except Exception as e:
        logger.error(f"Failed to connect database during startup: {e}")
        raise

    container = ServiceContainer.from_database(settings, db)
    await container.start()
    app.state.db = db
    app.state.container = container

    yield

    logger.info("OTP Gateway shutting down...")
    app.state.container = None
    try:
        await container.shutdown()
    except Exception as e:
        logger.error(f"Error stopping services: {e}")

    try:
        await asyncio.wait_for(DatabaseFactory.close_instance(), timeout=10)
        logger.info("DatabaseFactory instance closed successfully")
    except asyncio.TimeoutError:
        logger.error("DatabaseFactory close timed out after 10s")
    except Exception as e:
        logger.error(f"Error closing DatabaseFactory: {e}")


def create_app(container: Optional[ServiceContainer] = None, db=None) -> FastAPI:
    """
    Factory function to create FastAPI application instance.

    Args:
        container: Pre-built service container (tests); built at startup if omitted
        db: Database used by the health check when a container is injected

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()
    is_dev = settings.env in ("development", "testing")

    app = FastAPI(
        title="OTP Gateway API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if is_dev else None,
        redoc_url="/redoc" if is_dev else None,
        openapi_url="/openapi.json" if is_dev else None,
        description="Issue and verify one-time passcodes over paired messaging sessions.",
        openapi_tags=[
            {"name": "auth", "description": "Tenant authentication"},
            {"name": "session", "description": "Messaging session pairing and status"},
            {"name": "api", "description": "Public OTP endpoints authenticated by session id"},
            {"name": "health", "description": "Service health and monitoring"},
        ],
    )
    app.state.container = container
    app.state.db = db

    # Middleware order: last added runs first
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(CorrelationMiddleware)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OTPGatewayError, domain_exception_handler)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(session_router)
    app.include_router(api_router)

    return app
