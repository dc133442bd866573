"""Burst rate limiting for the usage guard.

Two backends behind one interface:

- ``InMemoryRateLimiter``: per-process fixed UTC-minute windows. Cheap, but each
  server instance enforces its own sub-limit.
- ``SupabaseRateLimiter``: atomic increment-with-expiry through a Postgres RPC,
  shared by every instance.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from usage_guard.core.clock import ResetClock, utcnow
from usage_guard.core.logging import logger
from usage_guard.infrastructure.database.client import SupabaseClient


@dataclass
class BurstResult:
    """Outcome of a burst check."""

    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime


class BoundedCounterStore:
    """Process-local counters keyed by ``(key, window)`` with expiry.

    Expired windows are swept at most once per ``sweep_interval`` seconds, and
    the least recently touched entries are evicted once ``max_entries`` is
    exceeded, so the map cannot grow for the life of the process.
    """

    def __init__(self, max_entries: int = 10000, sweep_interval: float = 60.0):
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self._entries: "OrderedDict[Tuple[str, str], Tuple[int, float]]" = OrderedDict()
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, window: str, now_ts: Optional[float] = None) -> int:
        """Current count for a window (0 when absent or expired)."""
        now_ts = time.time() if now_ts is None else now_ts
        entry = self._entries.get((key, window))
        if entry is None or entry[1] <= now_ts:
            return 0
        return entry[0]

    def try_consume(
        self,
        key: str,
        window: str,
        cost: int,
        limit: int,
        expires_at: datetime,
        now_ts: Optional[float] = None,
    ) -> Tuple[bool, int]:
        """Add ``cost`` to a window unless that would exceed ``limit``.

        Returns:
            (allowed, count after the call). A denied call leaves the count unchanged.
        """
        now_ts = time.time() if now_ts is None else now_ts
        self._sweep(now_ts)

        used = self.get(key, window, now_ts)
        if used + cost > limit:
            return False, used

        used += cost
        self._entries[(key, window)] = (used, expires_at.timestamp())
        self._entries.move_to_end((key, window))

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

        return True, used

    def _sweep(self, now_ts: float) -> None:
        if now_ts - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now_ts
        expired = [k for k, (_, expires) in self._entries.items() if expires <= now_ts]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("rate_buckets_swept", evicted=len(expired), remaining=len(self._entries))

    def clear(self) -> None:
        self._entries.clear()


class RateLimiter(ABC):
    """Per-minute request cap keyed by caller identity."""

    @abstractmethod
    async def check(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        """Count one request against the current minute; deny at or above ``limit``."""

    @abstractmethod
    async def peek(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        """Report the current minute without counting a request."""


class InMemoryRateLimiter(RateLimiter):
    """Rate limiter over a bounded in-process map."""

    def __init__(self, store: Optional[BoundedCounterStore] = None):
        self._store = store or BoundedCounterStore()

    @property
    def store(self) -> BoundedCounterStore:
        return self._store

    async def check(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        now = now or utcnow()
        reset_at = ResetClock.next_minute(now)
        allowed, used = self._store.try_consume(
            f"burst:{key}", ResetClock.minute_key(now), 1, limit, reset_at, now.timestamp()
        )

        if not allowed:
            logger.warning("rate_limit_exceeded", identity=key, count=used, limit=limit)
        return BurstResult(allowed, max(0, limit - used), limit, reset_at)

    async def peek(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        now = now or utcnow()
        used = self._store.get(f"burst:{key}", ResetClock.minute_key(now), now.timestamp())
        remaining = max(0, limit - used)
        return BurstResult(remaining > 0, remaining, limit, ResetClock.next_minute(now))


class SupabaseRateLimiter(RateLimiter):
    """Rate limiter using Supabase for distributed rate limiting.

    Relies on two RPC functions:
        increment_rate_bucket(p_key, p_window, p_limit, p_expires_at)
            -> {"allowed": bool, "count": int}
        peek_rate_bucket(p_key, p_window) -> int
    """

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()

    @staticmethod
    def _unwrap(data):
        if isinstance(data, list):
            return data[0] if data else None
        return data

    async def check(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        now = now or utcnow()
        reset_at = ResetClock.next_minute(now)
        params = {
            "p_key": f"burst:{key}",
            "p_window": ResetClock.minute_key(now),
            "p_limit": limit,
            "p_expires_at": reset_at.isoformat(),
        }

        try:
            result = await asyncio.to_thread(
                lambda: self._client.client.rpc("increment_rate_bucket", params).execute()
            )
            data = self._unwrap(result.data) or {}
            allowed = bool(data.get("allowed"))
            count = int(data.get("count") or 0)
        except Exception as e:
            logger.error("rate_limit_check_failed", identity=key, error=str(e))
            # Fail open (allow request if rate limit check fails)
            return BurstResult(True, limit, limit, reset_at)

        if not allowed:
            logger.warning("rate_limit_exceeded", identity=key, count=count, limit=limit)
        return BurstResult(allowed, max(0, limit - count), limit, reset_at)

    async def peek(self, key: str, limit: int, now: Optional[datetime] = None) -> BurstResult:
        now = now or utcnow()
        reset_at = ResetClock.next_minute(now)
        params = {"p_key": f"burst:{key}", "p_window": ResetClock.minute_key(now)}

        try:
            result = await asyncio.to_thread(
                lambda: self._client.client.rpc("peek_rate_bucket", params).execute()
            )
            count = int(self._unwrap(result.data) or 0)
        except Exception as e:
            logger.error("rate_limit_peek_failed", identity=key, error=str(e))
            count = 0

        remaining = max(0, limit - count)
        return BurstResult(remaining > 0, remaining, limit, reset_at)
