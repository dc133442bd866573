"""Usage guard: the single entry point AI-backed handlers call before work.

Flow for one request:
    identity -> tool tier gate -> burst check -> daily/monthly reservation
    -> telemetry

Authenticated users are charged against their persisted row. Anonymous
callers, and every caller when storage is not configured, get a small fixed
allotment held in process memory only.
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from usage_guard.core.clock import ResetClock, utcnow
from usage_guard.core.errors import ErrorCode, UsageError
from usage_guard.core.logging import logger
from usage_guard.core.tiers import (
    ANONYMOUS_POLICY,
    EMERGENCY_POLICY,
    CallerPolicy,
    burst_per_minute,
    daily_unit_limit,
    get_tool_policy,
    tier_allows,
)
from usage_guard.core.usage.quota import QuotaLedger
from usage_guard.infrastructure.auth.identity import CallerIdentity
from usage_guard.infrastructure.database.models import UsageEventRecord
from usage_guard.infrastructure.rate_limit import BoundedCounterStore, RateLimiter, get_rate_limiter
from usage_guard.infrastructure.telemetry import TelemetryEmitter, UsageOutcome, estimate_cost_usd

MAX_UNITS_PER_CALL = 1000
MAX_TOOL_NAME_LENGTH = 64

_OUTCOMES: Dict[ErrorCode, UsageOutcome] = {
    ErrorCode.RATE_LIMITED: UsageOutcome.BLOCKED_RATE_LIMIT,
    ErrorCode.USAGE_LIMIT_REACHED: UsageOutcome.BLOCKED_QUOTA,
    ErrorCode.TIER_RESTRICTED: UsageOutcome.BLOCKED_TIER,
    ErrorCode.UNAUTHORIZED: UsageOutcome.UNAUTHORIZED,
}


@dataclass
class RequestContext:
    """Per-request metadata carried into telemetry."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    endpoint: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class ReservationResult:
    """Budget left after a granted reservation."""

    remaining: int
    limit: int
    burst_remaining: int
    burst_limit: int
    membership: str
    reset_at: datetime
    tool_remaining: Optional[int] = None


@dataclass
class UsageStatus:
    """Read-only view of a caller's budgets."""

    membership: str
    used: int
    limit: int
    remaining: int
    burst_limit: int
    burst_remaining: int
    reset_at: datetime


class UsageGuard:
    """Enforces burst limits and daily/monthly quotas for AI requests."""

    def __init__(
        self,
        ledger: Optional[QuotaLedger] = None,
        rate_limiter: Optional[RateLimiter] = None,
        counters: Optional[BoundedCounterStore] = None,
        telemetry: Optional[TelemetryEmitter] = None,
        clock: Optional[ResetClock] = None,
    ):
        self.clock = clock or ResetClock.from_config()
        self.ledger = ledger or QuotaLedger(clock=self.clock)
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.counters = counters or BoundedCounterStore()
        self.telemetry = telemetry or TelemetryEmitter()

    @property
    def storage_configured(self) -> bool:
        return self.ledger.is_configured()

    # Public API

    async def reserve(
        self,
        identity: CallerIdentity,
        cost_units: int,
        tool: Optional[str] = None,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> ReservationResult:
        """Charge ``cost_units`` to the caller or raise a typed denial.

        Raises:
            UsageError: for every denial; unexpected failures surface as
                SERVER_ERROR with retryable=False
        """
        return await self._guarded(identity, cost_units, tool, context, now)

    async def reserve_live_minutes(
        self,
        identity: CallerIdentity,
        minutes: float,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> ReservationResult:
        """Charge live rehearsal minutes, rounded up to whole units.

        Only signed-in users may reserve minutes; anyone else is denied with
        UNAUTHORIZED.
        """
        return await self._guarded(
            identity, minutes, "live_rehearsal", context, now, live_minutes=True
        )

    async def status(self, identity: CallerIdentity, now: Optional[datetime] = None) -> UsageStatus:
        """Report the caller's budgets without charging anything.

        Raises:
            UsageError: NOT_CONFIGURED when storage credentials are missing
        """
        now = now or utcnow()
        if not self.storage_configured:
            raise UsageError.not_configured()

        try:
            if identity.is_user:
                snapshot = await self.ledger.peek(identity.key, now)
                membership = snapshot.membership.value
                used, limit = snapshot.used, snapshot.limit
                burst_limit = burst_per_minute(snapshot.membership)
            else:
                policy = ANONYMOUS_POLICY
                membership = policy.membership
                used = self.counters.get(
                    self._counter_key("anon", identity), self.clock.day_key(now), now.timestamp()
                )
                limit = policy.daily_units
                burst_limit = policy.burst_per_minute

            burst = await self.rate_limiter.peek(identity.limiter_key, burst_limit, now)
        except UsageError:
            raise
        except Exception as e:
            logger.exception("usage_status_failed", identity=identity.limiter_key)
            raise UsageError.unexpected(e) from e

        return UsageStatus(
            membership=membership,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            burst_limit=burst_limit,
            burst_remaining=burst.remaining,
            reset_at=self.clock.next_reset(now),
        )

    # Internals

    async def _guarded(
        self,
        identity: CallerIdentity,
        cost_units,
        tool: Optional[str],
        context: Optional[RequestContext],
        now: Optional[datetime],
        live_minutes: bool = False,
    ) -> ReservationResult:
        """Validate, reserve and record exactly one telemetry event."""
        context = context or RequestContext()
        now = now or utcnow()
        started = time.monotonic()

        try:
            if live_minutes:
                cost_units = self._live_units(identity, cost_units)
            self._validate(cost_units, tool)
            result = await self._reserve(identity, cost_units, tool, now)
        except UsageError as e:
            self._emit(identity, context, cost_units, tool, started, error=e)
            raise
        except Exception as e:
            logger.exception("usage_guard_failed", identity=identity.limiter_key, tool=tool)
            error = UsageError.unexpected(e)
            self._emit(identity, context, cost_units, tool, started, error=error)
            raise error from e

        self._emit(identity, context, cost_units, tool, started, result=result)
        return result

    @staticmethod
    def _live_units(identity: CallerIdentity, minutes) -> int:
        if not identity.is_user:
            raise UsageError.unauthorized("Authentication required. Sign in to use live rehearsal.")
        try:
            minutes = float(minutes)
        except (TypeError, ValueError):
            raise UsageError.invalid_request("minutes must be a number.")
        if not math.isfinite(minutes) or minutes < 0:
            raise UsageError.invalid_request("minutes must be a non-negative number.")
        return math.ceil(minutes)

    @staticmethod
    def _validate(cost_units, tool) -> None:
        if isinstance(cost_units, bool) or not isinstance(cost_units, int):
            raise UsageError.invalid_request("units must be an integer.", units=repr(cost_units))
        if cost_units < 0 or cost_units > MAX_UNITS_PER_CALL:
            raise UsageError.invalid_request(
                f"units must be between 0 and {MAX_UNITS_PER_CALL}.", units=cost_units
            )
        if tool is not None and (not isinstance(tool, str) or len(tool) > MAX_TOOL_NAME_LENGTH):
            raise UsageError.invalid_request("tool must be a short string.")

    async def _reserve(
        self, identity: CallerIdentity, cost: int, tool: Optional[str], now: datetime
    ) -> ReservationResult:
        policy = get_tool_policy(tool)

        if not self.storage_configured:
            if policy is not None:
                # Monthly tool balances only exist in storage
                raise UsageError.not_configured()
            return await self._reserve_in_process(identity, cost, EMERGENCY_POLICY, "emergency", now)

        if not identity.is_user:
            if policy is not None:
                raise UsageError.tier_restricted(
                    policy.name, policy.min_tier.value, membership=ANONYMOUS_POLICY.membership
                )
            return await self._reserve_in_process(identity, cost, ANONYMOUS_POLICY, "anon", now)

        return await self._reserve_user(identity, cost, tool, now)

    @staticmethod
    def _counter_key(scope: str, identity: CallerIdentity) -> str:
        return f"{scope}:{identity.limiter_key}"

    async def _reserve_in_process(
        self,
        identity: CallerIdentity,
        cost: int,
        policy: CallerPolicy,
        scope: str,
        now: datetime,
    ) -> ReservationResult:
        burst = await self.rate_limiter.check(identity.limiter_key, policy.burst_per_minute, now)
        if not burst.allowed:
            raise UsageError.rate_limited(burst.reset_at, burst_limit=burst.limit)

        reset_at = self.clock.next_reset(now)
        allowed, used = self.counters.try_consume(
            self._counter_key(scope, identity),
            self.clock.day_key(now),
            cost,
            policy.daily_units,
            reset_at,
            now.timestamp(),
        )
        if not allowed:
            raise UsageError.usage_limit_reached(
                "AI usage limit reached for today.",
                reset_at=reset_at,
                remaining=max(0, policy.daily_units - used),
                limit=policy.daily_units,
                membership=policy.membership,
            )

        return ReservationResult(
            remaining=max(0, policy.daily_units - used),
            limit=policy.daily_units,
            burst_remaining=burst.remaining,
            burst_limit=burst.limit,
            membership=policy.membership,
            reset_at=reset_at,
        )

    async def _reserve_user(
        self, identity: CallerIdentity, cost: int, tool: Optional[str], now: datetime
    ) -> ReservationResult:
        policy = get_tool_policy(tool)
        profile = await self.ledger.load(identity.key, now)
        tier = profile.tier

        if policy is not None and not tier_allows(tier, policy.min_tier):
            logger.info(
                "tool_tier_restricted",
                user_id=identity.key,
                tool=policy.name,
                membership=tier.value,
                min_tier=policy.min_tier.value,
            )
            raise UsageError.tier_restricted(policy.name, policy.min_tier.value, membership=tier.value)

        if daily_unit_limit(tier) == 0:
            raise UsageError(
                ErrorCode.USAGE_LIMIT_REACHED,
                "Your membership has expired. Renew your plan to keep using AI tools.",
                status_code=402,
                retryable=False,
                details={"membership": tier.value},
            )

        burst = await self.rate_limiter.check(identity.limiter_key, burst_per_minute(tier), now)
        if not burst.allowed:
            raise UsageError.rate_limited(
                burst.reset_at, burst_limit=burst.limit, membership=tier.value
            )

        if policy is not None:
            profile = await self.ledger.ensure_monthly(profile, policy, now)

        snapshot = await self.ledger.charge(profile, cost, policy, now)

        return ReservationResult(
            remaining=snapshot.remaining,
            limit=snapshot.limit,
            burst_remaining=burst.remaining,
            burst_limit=burst.limit,
            membership=snapshot.membership.value,
            reset_at=self.clock.next_reset(now),
            tool_remaining=snapshot.tool_remaining,
        )

    def _emit(
        self,
        identity: CallerIdentity,
        context: RequestContext,
        cost_units,
        tool: Optional[str],
        started: float,
        result: Optional[ReservationResult] = None,
        error: Optional[UsageError] = None,
    ) -> None:
        """Queue one telemetry event; never raises."""
        try:
            units = cost_units if isinstance(cost_units, int) and not isinstance(cost_units, bool) else None
            charged = units if result is not None else 0
            if result is not None:
                membership = result.membership
            else:
                membership = error.details.get("membership") if error else None

            event = UsageEventRecord(
                request_id=context.request_id,
                actor_type=identity.actor_type,
                identity_key=identity.limiter_key,
                user_id=identity.user_id,
                ip_hash=identity.ip_hash,
                tool=tool[:MAX_TOOL_NAME_LENGTH] if isinstance(tool, str) else None,
                endpoint=context.endpoint,
                provider=context.provider,
                model=context.model,
                outcome=(
                    UsageOutcome.ALLOWED.value
                    if error is None
                    else _OUTCOMES.get(error.code, UsageOutcome.ERROR).value
                ),
                http_status=200 if error is None else error.status_code,
                error_code=error.code.value if error else None,
                retryable=error.retryable if error else None,
                units=units,
                charged_units=charged,
                membership=membership,
                latency_ms=int((time.monotonic() - started) * 1000),
                user_agent=context.user_agent,
                estimated_cost_usd=estimate_cost_usd(context.provider, context.model, charged),
            )
            self.telemetry.record(event)
        except Exception as e:
            logger.error("telemetry_emit_failed", request_id=context.request_id, error=str(e))
