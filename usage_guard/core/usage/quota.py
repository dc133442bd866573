"""Daily and monthly quota reservation against the persisted users row.

Counters reset lazily: the first request that observes a stale reset date
zeroes them. Resets and charges are conditional updates on the values read,
so two concurrent requests can never both reset the same day, and a charge
that lost a race is retried from a fresh read instead of overwriting.
Storage failures deny the request (fail-closed).
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from usage_guard.core.clock import ResetClock
from usage_guard.core.errors import ErrorCode, UsageError
from usage_guard.core.logging import logger
from usage_guard.core.tiers import (
    Tier,
    ToolPolicy,
    daily_unit_limit,
    monthly_defaults,
    monthly_tool_quota,
)
from usage_guard.infrastructure.database.models import UsageProfile
from usage_guard.infrastructure.database.repositories import UserUsageRepository

MAX_CAS_ATTEMPTS = 3


@dataclass
class QuotaSnapshot:
    """Budget left after (or without) a charge."""

    membership: Tier
    used: int
    limit: int
    remaining: int
    tool_remaining: Optional[int] = None


class QuotaLedger:
    """Reads, resets and charges per-user usage counters."""

    def __init__(
        self,
        repository: Optional[UserUsageRepository] = None,
        clock: Optional[ResetClock] = None,
        max_attempts: int = MAX_CAS_ATTEMPTS,
    ):
        self.repository = repository or UserUsageRepository()
        self.clock = clock or ResetClock.from_config()
        self.max_attempts = max_attempts

    def is_configured(self) -> bool:
        return self.repository.is_configured()

    async def _call(self, operation: str, fn, *args):
        """Run a blocking repository call; any failure denies the request."""
        try:
            return await asyncio.to_thread(fn, *args)
        except UsageError:
            raise
        except Exception as e:
            logger.error("usage_storage_failed", operation=operation, error=str(e))
            raise UsageError.storage_unavailable(operation=operation) from e

    # Reads

    async def _fetch(self, user_id: str) -> UsageProfile:
        profile = await self._call("get_profile", self.repository.get_profile, user_id)
        if profile is None:
            raise UsageError.storage_unavailable(operation="get_profile", reason="row vanished")
        return profile

    async def load(self, user_id: str, now: datetime) -> UsageProfile:
        """Load the user's row, creating it on first use and applying the daily reset."""
        profile = await self._call("get_profile", self.repository.get_profile, user_id)
        if profile is None:
            profile = await self._call(
                "create_profile", self.repository.create_profile, user_id, now
            )
        return await self._apply_daily_reset(profile, now)

    async def peek(self, user_id: str, now: datetime) -> QuotaSnapshot:
        """Current budget without writing anything (a stale day reads as zero used)."""
        profile = await self._call("get_profile", self.repository.get_profile, user_id)
        if profile is None:
            profile = UsageProfile(user_id=user_id)
        used = 0 if self.needs_daily_reset(profile, now) else profile.used_units
        limit = daily_unit_limit(profile.tier)
        return QuotaSnapshot(profile.tier, used, limit, max(0, limit - used))

    # Resets

    def needs_daily_reset(self, profile: UsageProfile, now: datetime) -> bool:
        last = profile.last_reset_at
        return last is None or self.clock.day_key(last) != self.clock.day_key(now)

    def month_rolled_over(self, profile: UsageProfile, now: datetime) -> bool:
        last = profile.quota_reset_at
        return last is None or self.clock.month_key(last) != self.clock.month_key(now)

    def needs_monthly_reset(self, profile: UsageProfile, policy: ToolPolicy, now: datetime) -> bool:
        """True when the month rolled over or the tool's balance was never set."""
        if self.month_rolled_over(profile, now):
            return True
        return profile.tool_balances.get(policy.monthly_quota_field) is None

    async def _apply_daily_reset(self, profile: UsageProfile, now: datetime) -> UsageProfile:
        for _ in range(self.max_attempts):
            if not self.needs_daily_reset(profile, now):
                return profile

            swapped = await self._call(
                "reset_daily",
                self.repository.reset_daily,
                profile.user_id,
                profile.last_reset_date,
                now,
            )
            if swapped:
                logger.info(
                    "usage_daily_reset",
                    user_id=profile.user_id,
                    previous_count=profile.generation_count,
                    day=self.clock.day_key(now),
                )
                profile.generation_count = 0
                profile.last_reset_date = now.isoformat()
                return profile

            # Another request reset (or charged) first; use its result
            profile = await self._fetch(profile.user_id)

        if not self.needs_daily_reset(profile, now):
            return profile
        raise UsageError.storage_unavailable(operation="reset_daily", reason="conflict")

    async def ensure_monthly(
        self, profile: UsageProfile, policy: ToolPolicy, now: datetime
    ) -> UsageProfile:
        """Restore tier-default tool balances when the usage month rolled over.

        Within the same month only a NULL balance for ``policy``'s tool is
        filled; partly used balances of other tools are left alone.
        """
        field = policy.monthly_quota_field
        for _ in range(self.max_attempts):
            if not self.needs_monthly_reset(profile, policy, now):
                return profile

            if self.month_rolled_over(profile, now):
                balances = monthly_defaults(profile.tier)
                swapped = await self._call(
                    "reset_monthly",
                    self.repository.reset_monthly,
                    profile.user_id,
                    balances,
                    profile.quota_reset_date,
                    now,
                )
                if swapped:
                    logger.info(
                        "usage_monthly_reset",
                        user_id=profile.user_id,
                        month=self.clock.month_key(now),
                        balances=balances,
                    )
                    profile.tool_balances.update(balances)
                    profile.quota_reset_date = now.isoformat()
                    return profile
            else:
                balance = monthly_tool_quota(field, profile.tier)
                swapped = await self._call(
                    "fill_tool_balance",
                    self.repository.fill_tool_balance,
                    profile.user_id,
                    field,
                    balance,
                )
                if swapped:
                    logger.info(
                        "usage_tool_balance_filled",
                        user_id=profile.user_id,
                        field=field,
                        balance=balance,
                    )
                    profile.tool_balances[field] = balance
                    return profile

            profile = await self._fetch(profile.user_id)

        if not self.needs_monthly_reset(profile, policy, now):
            return profile
        raise UsageError.storage_unavailable(operation="reset_monthly", reason="conflict")

    # Charging

    def _check_budget(
        self, profile: UsageProfile, cost: int, policy: Optional[ToolPolicy], now: datetime
    ) -> None:
        tier = profile.tier
        limit = daily_unit_limit(tier)
        remaining = max(0, limit - profile.used_units)
        if remaining < cost:
            raise UsageError.usage_limit_reached(
                f"Daily AI limit reached for your plan ({tier.value}).",
                reset_at=self.clock.next_reset(now),
                remaining=remaining,
                limit=limit,
                requested=cost,
                membership=tier.value,
            )

        if policy is not None:
            balance = profile.tool_balances.get(policy.monthly_quota_field) or 0
            if balance < cost:
                raise UsageError.usage_limit_reached(
                    f"Monthly {policy.name.replace('_', ' ')} quota reached for your plan ({tier.value}).",
                    reset_at=self.clock.next_month_reset(now),
                    status_code=402,
                    tool=policy.name,
                    tool_remaining=balance,
                    requested=cost,
                    membership=tier.value,
                )

    def _snapshot(self, profile: UsageProfile, policy: Optional[ToolPolicy]) -> QuotaSnapshot:
        limit = daily_unit_limit(profile.tier)
        tool_remaining = None
        if policy is not None:
            tool_remaining = profile.tool_balances.get(policy.monthly_quota_field) or 0
        return QuotaSnapshot(
            membership=profile.tier,
            used=profile.used_units,
            limit=limit,
            remaining=max(0, limit - profile.used_units),
            tool_remaining=tool_remaining,
        )

    async def charge(
        self,
        profile: UsageProfile,
        cost: int,
        policy: Optional[ToolPolicy],
        now: datetime,
    ) -> QuotaSnapshot:
        """Consume ``cost`` units (and tool balance) or raise without mutating.

        Raises:
            UsageError: USAGE_LIMIT_REACHED when either budget is short,
                SERVER_ERROR when the write fails or keeps losing races
        """
        for attempt in range(1, self.max_attempts + 1):
            self._check_budget(profile, cost, policy, now)

            if cost == 0:
                return self._snapshot(profile, policy)

            field = policy.monthly_quota_field if policy else None
            balance = profile.tool_balances.get(field) if field else None
            new_count = profile.used_units + cost
            new_balance = balance - cost if field else None

            swapped = await self._call(
                "charge",
                self.repository.charge,
                profile.user_id,
                profile.generation_count,
                new_count,
                field,
                balance,
                new_balance,
            )
            if swapped:
                profile.generation_count = new_count
                if field:
                    profile.tool_balances[field] = new_balance
                snapshot = self._snapshot(profile, policy)
                logger.info(
                    "quota_reserved",
                    user_id=profile.user_id,
                    units=cost,
                    tool=policy.name if policy else None,
                    remaining=snapshot.remaining,
                    tool_remaining=snapshot.tool_remaining,
                )
                return snapshot

            logger.info("usage_charge_conflict", user_id=profile.user_id, attempt=attempt)
            profile = await self.load(profile.user_id, now)
            if policy is not None:
                profile = await self.ensure_monthly(profile, policy, now)

        raise UsageError(
            ErrorCode.SERVER_ERROR,
            "Too many concurrent requests for this account. Try again shortly.",
            status_code=503,
            retryable=True,
            details={"operation": "charge", "reason": "conflict"},
        )
