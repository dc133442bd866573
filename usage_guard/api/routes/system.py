"""System routes for the usage guard API."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from usage_guard.api.dependencies import get_usage_guard
from usage_guard.config import config
from usage_guard.core.usage import UsageGuard
from usage_guard.infrastructure.health import get_health_status

router = APIRouter(tags=["System"])


@router.get("/health")
async def health_check(guard: UsageGuard = Depends(get_usage_guard)) -> Dict[str, Any]:
    """Health check with Supabase testing. Returns service status, version and telemetry queue state."""
    return await get_health_status(
        telemetry=guard.telemetry,
        rate_limit_backend=config.rate_limit_backend(),
    )
