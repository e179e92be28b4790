"""
AgentX Engine - FastAPI Application

Main application entry point. Creates the FastAPI app, wires up routers and
manages the database pool across the application lifespan.

Run with: uvicorn agentx.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import configure_logging, get_settings, validate_required_env
from .core.errors import setup_error_handlers
from .core.middleware import RequestLoggingMiddleware
from .db import close_db_pool, init_db_pool
from .routers.agents import router as agents_router
from .routers.auth import router as auth_router
from .routers.dashboard import router as dashboard_router
from .routers.health import router as health_router
from .routers.tasks import router as tasks_router

# Configure logging before anything else
configure_logging()
logger = logging.getLogger(__name__)

# Fail fast if secrets or the database URL are missing
try:
    validate_required_env(fail_fast=True)
except RuntimeError as e:
    logging.error(f"Configuration validation failed: {e}")
    raise


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    - Startup: initialize the database pool (failure leaves readiness red)
    - Shutdown: close the pool
    """
    logger.info(f"Starting AgentX Engine v{__version__}")
    await init_db_pool(app)

    yield

    logger.info("Shutting down AgentX Engine...")
    await close_db_pool()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """
    Application factory.

    Middleware order: CORS is added first so it stays outermost and answers
    preflight requests before logging runs.
    """
    settings = get_settings()

    app = FastAPI(
        title="AgentX",
        description=(
            "Task distribution backend: administrators upload contact sheets, "
            "rows are split across active agents, agents work their batches."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    logger.info(f"[CORS] Allowed origins: {settings.cors_allowed_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,  # cookie sessions
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    setup_error_handlers(app)

    app.include_router(health_router, prefix="/api")
    app.include_router(auth_router, prefix="/api")
    app.include_router(tasks_router, prefix="/api")
    app.include_router(agents_router, prefix="/api")
    app.include_router(dashboard_router, prefix="/api")

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint - service info."""
        return {
            "service": "AgentX",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
        }

    logger.info(f"FastAPI app created: {app.title} v{__version__}")
    return app


app = create_app()
