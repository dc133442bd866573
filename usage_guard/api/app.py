"""FastAPI application factory for the usage guard API."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from usage_guard import __version__
from usage_guard.api.middleware import register_error_handlers, request_id_middleware
from usage_guard.api.routes import system, usage
from usage_guard.core.logging import logger
from usage_guard.core.usage import UsageGuard


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the telemetry worker for the lifetime of the app."""
    telemetry = app.state.usage_guard.telemetry
    telemetry.start()
    logger.info("usage_guard_started", storage_configured=app.state.usage_guard.storage_configured)
    try:
        yield
    finally:
        await telemetry.stop()


def create_app(guard: Optional[UsageGuard] = None) -> FastAPI:
    """Create and configure FastAPI app. Factory pattern for testability."""
    app = FastAPI(
        title="magic-usage-guard",
        description=(
            "Usage enforcement for AI-backed endpoints: caller identity, tier gating, "
            "per-minute burst limits, daily and monthly quotas, and usage telemetry."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Store guard for route access
    app.state.usage_guard = guard or UsageGuard()

    # Add middleware
    app.middleware("http")(request_id_middleware)
    register_error_handlers(app)

    # Register routes
    app.include_router(system.router)
    app.include_router(usage.router)

    return app
