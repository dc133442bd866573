"""Rate limiter selection and route-level enforcement."""

from typing import Optional

from usage_guard.config import config
from usage_guard.core.errors import UsageError
from usage_guard.core.logging import logger
from usage_guard.infrastructure.rate_limit.limiter import (
    BoundedCounterStore,
    InMemoryRateLimiter,
    RateLimiter,
    SupabaseRateLimiter,
)

# Module-level singleton
_limiter: Optional[RateLimiter] = None


def build_rate_limiter() -> RateLimiter:
    """Create the limiter named by RATE_LIMIT_BACKEND.

    ``supabase`` needs storage credentials; without them the in-memory
    limiter is used instead.
    """
    backend = config.rate_limit_backend()

    if backend == "supabase":
        if config.is_configured():
            logger.info("rate_limiter_selected", backend="supabase")
            return SupabaseRateLimiter()
        logger.warning(
            "rate_limiter_fallback",
            requested="supabase",
            backend="memory",
            missing=config.get_missing_config(),
        )
    elif backend != "memory":
        logger.warning("rate_limiter_unknown_backend", requested=backend, backend="memory")

    return InMemoryRateLimiter(BoundedCounterStore(max_entries=config.rate_limit_max_buckets()))


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter."""
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter


async def enforce_rate_limit(limiter: RateLimiter, key: str, limit: int) -> None:
    """Count a request for ``key`` and deny once ``limit`` per minute is reached.

    Raises:
        UsageError: RATE_LIMITED (429) when the minute bucket is full
    """
    result = await limiter.check(key, limit)
    if not result.allowed:
        raise UsageError.rate_limited(result.reset_at, limit=limit)
