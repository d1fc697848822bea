"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (logging, database pool).
Middleware, CORS, and routers all registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from locasso import __version__
from locasso.api import api_router
from locasso.config import settings
from locasso.log_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Schema migrations are applied out of band (alembic upgrade
    head), never from here.
    """
    logger.info(
        "locasso.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        dev_mode_allowed=settings.dev_mode_allowed,
    )

    yield

    logger.info("locasso.shutdown")

    from locasso.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Locasso API",
        description="Identity backend — resolves verified sign-ins to Locasso users",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RequestId → AuthLogging → Security → handler

    from locasso.middleware.auth_logging import AuthLoggingMiddleware
    from locasso.middleware.request_id import RequestIdMiddleware
    from locasso.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(AuthLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: locasso.main:app)
app = create_app()
