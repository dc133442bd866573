"""Health status aggregation for the usage guard."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from usage_guard import __version__
from usage_guard.infrastructure.health.checks import check_supabase_connection
from usage_guard.infrastructure.telemetry import TelemetryEmitter


async def get_health_status(
    telemetry: Optional[TelemetryEmitter] = None,
    rate_limit_backend: str = "memory",
    service_name: str = "magic-usage-guard",
) -> Dict[str, Any]:
    """Get comprehensive health status.

    Args:
        telemetry: Running emitter, reported with its queue counters
        rate_limit_backend: Name of the active burst limiter backend
        service_name: Service name for response

    Returns:
        Dict with overall status and dependency health
    """
    try:
        supabase_health = await check_supabase_connection()
    except Exception as e:
        supabase_health = {"status": "error", "error": str(e)}

    telemetry_health: Dict[str, Any] = {"status": "disabled"}
    if telemetry is not None and telemetry.enabled:
        telemetry_health = {
            "status": "enabled",
            "pending": telemetry.pending,
            "written": telemetry.written,
            "failed": telemetry.failed,
            "dropped": telemetry.dropped,
        }

    overall_status = "healthy" if supabase_health.get("status") == "healthy" else "degraded"

    return {
        "status": overall_status,
        "service": service_name,
        "version": __version__,
        "rate_limit_backend": rate_limit_backend,
        "dependencies": {"supabase": supabase_health},
        "telemetry": telemetry_health,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
