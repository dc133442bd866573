"""Health monitoring module for the usage guard."""

from usage_guard.infrastructure.health.checks import check_supabase_connection
from usage_guard.infrastructure.health.endpoints import get_health_status

__all__ = ["check_supabase_connection", "get_health_status"]
