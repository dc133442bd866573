"""Health check functions for the usage guard.

Tests connectivity to the persisted usage store.
"""

import asyncio
from typing import Any, Dict

from usage_guard.config import config
from usage_guard.infrastructure.database import SupabaseClient


async def check_supabase_connection(timeout: float = 2.0) -> Dict[str, Any]:
    """Test Supabase connectivity with minimal query against the users table.

    Returns:
        Dict with status ("healthy", "unconfigured", "timeout", "unavailable")
        and optional error message
    """
    try:
        if not config.is_configured():
            return {"status": "unconfigured", "error": "Supabase credentials not set"}

        supabase = SupabaseClient().client

        await asyncio.wait_for(
            asyncio.to_thread(
                lambda: supabase.table("users").select("id").limit(1).execute()
            ),
            timeout=timeout,
        )

        return {"status": "healthy", "database": "connected"}

    except asyncio.TimeoutError:
        return {"status": "timeout", "error": f"Request timed out after {timeout:g}s"}

    except Exception as e:
        return {"status": "unavailable", "error": str(e)[:100]}
