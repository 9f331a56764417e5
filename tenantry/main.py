"""
Tenantry API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry import __version__
from tenantry.api.v1 import router as api_v1_router
from tenantry.core.config import get_settings
from tenantry.core.database import check_database, dispose_engine, get_session, init_db
from tenantry.core.errors import register_exception_handlers
from tenantry.core.logging import configure_logging
from tenantry.core.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from tenantry.core.redis import close_redis

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Tenantry",
        description="Multi-tenant accounts, organizations and role-based access.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (last added runs first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_exception_handlers(app)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check(session: AsyncSession = Depends(get_session)):
        """Readiness check: the database must answer."""
        try:
            await check_database(session)
        except (SQLAlchemyError, OSError) as exc:
            log.warning("ready.database_unavailable", error=str(exc))
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        log.info("tenantry.starting", environment=settings.environment)
        if settings.environment == "development":
            await init_db()

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("tenantry.shutting_down")
        await close_redis()
        await dispose_engine()

    return app


app = create_app()
