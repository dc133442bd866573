"""Rate limiting module for the usage guard.

Per-minute burst limits with an in-memory or Supabase-backed counter.
"""

from usage_guard.infrastructure.rate_limit.deps import (
    build_rate_limiter,
    enforce_rate_limit,
    get_rate_limiter,
)
from usage_guard.infrastructure.rate_limit.limiter import (
    BoundedCounterStore,
    BurstResult,
    InMemoryRateLimiter,
    RateLimiter,
    SupabaseRateLimiter,
)

__all__ = [
    "BoundedCounterStore",
    "BurstResult",
    "InMemoryRateLimiter",
    "RateLimiter",
    "SupabaseRateLimiter",
    "build_rate_limiter",
    "enforce_rate_limit",
    "get_rate_limiter",
]
