"""Tests for the usage guard request flow."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, InMemoryUserRepository, RecordingEventRepository
from usage_guard.core.errors import ErrorCode, UsageError
from usage_guard.core.usage import QuotaLedger, RequestContext, UsageGuard
from usage_guard.infrastructure.auth.identity import CallerIdentity
from usage_guard.infrastructure.rate_limit import BoundedCounterStore, InMemoryRateLimiter
from usage_guard.infrastructure.telemetry import TelemetryEmitter

TODAY = NOW.isoformat()
GUEST = CallerIdentity.anonymous("iphash-1")


def user(user_id: str = "user-1") -> CallerIdentity:
    return CallerIdentity.user(user_id, "iphash-1")


async def denial(coro) -> UsageError:
    with pytest.raises(UsageError) as exc_info:
        await coro
    return exc_info.value


class TestDailyQuota:
    """Test daily unit enforcement for signed-in users."""

    @pytest.mark.asyncio
    async def test_last_unit_of_the_day(self, guard, user_repo):
        user_repo.seed("user-1", generation_count=19, last_reset_date=TODAY)

        result = await guard.reserve(user(), 1, now=NOW)

        assert result.remaining == 0
        assert result.limit == 20
        assert result.membership == "trial"
        assert result.reset_at == datetime(2024, 6, 16, tzinfo=timezone.utc)
        assert result.burst_limit == 20
        assert result.burst_remaining == 19

    @pytest.mark.asyncio
    async def test_over_limit_leaves_count_unchanged(self, guard, user_repo):
        user_repo.seed("user-1", generation_count=19, last_reset_date=TODAY)

        error = await denial(guard.reserve(user(), 2, now=NOW))

        assert error.code == ErrorCode.USAGE_LIMIT_REACHED
        assert error.status_code == 429
        assert error.retryable
        assert error.reset_at == datetime(2024, 6, 16, tzinfo=timezone.utc)
        assert user_repo.rows["user-1"]["generation_count"] == 19

    @pytest.mark.asyncio
    async def test_new_day_starts_fresh(self, guard, user_repo):
        user_repo.seed(
            "user-1", generation_count=20, last_reset_date=(NOW - timedelta(days=1)).isoformat()
        )
        result = await guard.reserve(user(), 1, now=NOW)
        assert result.remaining == 19

    @pytest.mark.asyncio
    async def test_first_request_creates_profile(self, guard, user_repo):
        result = await guard.reserve(user("new-user"), 3, now=NOW)
        assert result.remaining == 17
        assert user_repo.rows["new-user"]["generation_count"] == 3

    @pytest.mark.asyncio
    async def test_expired_membership(self, guard, user_repo):
        user_repo.seed("user-1", membership="expired", last_reset_date=TODAY)

        error = await denial(guard.reserve(user(), 1, now=NOW))

        assert error.code == ErrorCode.USAGE_LIMIT_REACHED
        assert error.status_code == 402
        assert not error.retryable

    @pytest.mark.asyncio
    async def test_legacy_membership(self, guard, user_repo):
        user_repo.seed("user-1", membership="semi-pro", last_reset_date=TODAY)
        result = await guard.reserve(user(), 1, now=NOW)
        assert result.membership == "performer"
        assert result.limit == 100

    @pytest.mark.asyncio
    async def test_storage_failure_denies(self, guard, user_repo):
        user_repo.fail_on.add("get_profile")

        error = await denial(guard.reserve(user(), 1, now=NOW))

        assert error.code == ErrorCode.SERVER_ERROR
        assert error.status_code == 503
        assert error.retryable

    @pytest.mark.asyncio
    async def test_unset_counter_is_charged(self, guard, user_repo):
        user_repo.seed("user-1", membership="performer", generation_count=None, last_reset_date=TODAY)

        result = await guard.reserve(user(), 1, now=NOW)

        assert result.remaining == 99
        assert user_repo.rows["user-1"]["generation_count"] == 1


class TestBurstLimit:
    """Test per-minute request caps."""

    @pytest.mark.asyncio
    async def test_anonymous_ninth_request_in_a_minute(self, guard):
        for _ in range(8):
            await guard.reserve(GUEST, 1, now=NOW)

        error = await denial(guard.reserve(GUEST, 1, now=NOW))

        assert error.code == ErrorCode.RATE_LIMITED
        assert error.status_code == 429
        assert error.retryable
        assert error.reset_at == NOW + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_burst_denial_does_not_charge(self, guard, user_repo):
        user_repo.seed("user-1", last_reset_date=TODAY)
        for _ in range(20):
            await guard.reserve(user(), 0, now=NOW)

        error = await denial(guard.reserve(user(), 1, now=NOW))

        assert error.code == ErrorCode.RATE_LIMITED
        assert user_repo.rows["user-1"]["generation_count"] == 0

    @pytest.mark.asyncio
    async def test_higher_tier_higher_burst(self, guard, user_repo):
        user_repo.seed("user-1", membership="professional", last_reset_date=TODAY)
        result = await guard.reserve(user(), 1, now=NOW)
        assert result.burst_limit == 120


class TestAnonymousCallers:
    """Test the in-process allotment for callers without an account."""

    @pytest.mark.asyncio
    async def test_daily_allotment(self, guard):
        result = await guard.reserve(GUEST, 10, now=NOW)
        assert result.membership == "guest"
        assert result.limit == 15
        assert result.remaining == 5

        error = await denial(guard.reserve(GUEST, 6, now=NOW + timedelta(minutes=1)))
        assert error.code == ErrorCode.USAGE_LIMIT_REACHED
        assert error.reset_at == datetime(2024, 6, 16, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_allotment_resets_next_day(self, guard):
        await guard.reserve(GUEST, 15, now=NOW)
        result = await guard.reserve(GUEST, 1, now=NOW + timedelta(days=1))
        assert result.remaining == 14

    @pytest.mark.asyncio
    async def test_gated_tool_requires_account(self, guard):
        error = await denial(guard.reserve(GUEST, 1, tool="live_rehearsal", now=NOW))
        assert error.code == ErrorCode.TIER_RESTRICTED
        assert error.status_code == 402
        assert not error.retryable


class TestToolGate:
    """Test tier gating of named tools."""

    @pytest.mark.asyncio
    async def test_performer_cannot_use_video(self, guard, user_repo):
        user_repo.seed("user-1", membership="performer", generation_count=5, last_reset_date=TODAY)

        error = await denial(guard.reserve(user(), 1, tool="video_rehearsal", now=NOW))

        assert error.code == ErrorCode.TIER_RESTRICTED
        assert error.status_code == 402
        assert error.details["membership"] == "performer"
        assert user_repo.rows["user-1"]["generation_count"] == 5

    @pytest.mark.asyncio
    async def test_professional_can_use_video(self, guard, user_repo):
        user_repo.seed("user-1", membership="professional", last_reset_date=TODAY)

        result = await guard.reserve(user(), 1, tool="video_rehearsal", now=NOW)

        assert result.tool_remaining == 19
        assert user_repo.rows["user-1"]["quota_video_uploads"] == 19

    @pytest.mark.asyncio
    async def test_ungated_tool_name_is_accepted(self, guard, user_repo):
        user_repo.seed("user-1", last_reset_date=TODAY)
        result = await guard.reserve(user(), 1, tool="text_feedback", now=NOW)
        assert result.tool_remaining is None


class TestLiveMinutes:
    """Test live rehearsal minute charging."""

    @pytest.mark.asyncio
    async def test_rounds_minutes_up(self, guard, user_repo):
        user_repo.seed("user-1", membership="performer", last_reset_date=TODAY)

        result = await guard.reserve_live_minutes(user(), 2.5, now=NOW)

        assert result.tool_remaining == 57
        assert user_repo.rows["user-1"]["generation_count"] == 3

    @pytest.mark.asyncio
    async def test_trial_cannot_go_live(self, guard, user_repo):
        user_repo.seed("user-1", last_reset_date=TODAY)
        error = await denial(guard.reserve_live_minutes(user(), 1, now=NOW))
        assert error.code == ErrorCode.TIER_RESTRICTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [-1, float("nan"), float("inf"), "abc"])
    async def test_rejects_bad_minutes(self, guard, minutes):
        error = await denial(guard.reserve_live_minutes(user(), minutes, now=NOW))
        assert error.code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_guest_cannot_go_live(self, guard):
        error = await denial(guard.reserve_live_minutes(GUEST, 1, now=NOW))

        assert error.code == ErrorCode.UNAUTHORIZED
        assert error.status_code == 401

    @pytest.mark.asyncio
    async def test_keeps_other_tool_balances(self, guard, user_repo):
        user_repo.seed(
            "user-1",
            membership="performer",
            last_reset_date=TODAY,
            quota_reset_date=TODAY,
            quota_image_gen=5,
        )

        result = await guard.reserve_live_minutes(user(), 1, now=NOW)

        assert result.tool_remaining == 59
        assert user_repo.rows["user-1"]["quota_image_gen"] == 5


class TestValidation:
    """Test input validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("units", [-1, 1001, 1.5, True, "3", None])
    async def test_rejects_bad_units(self, guard, units):
        error = await denial(guard.reserve(GUEST, units, now=NOW))
        assert error.code == ErrorCode.INVALID_REQUEST
        assert error.status_code == 400

    @pytest.mark.asyncio
    async def test_rejects_long_tool_name(self, guard):
        error = await denial(guard.reserve(GUEST, 1, tool="x" * 65, now=NOW))
        assert error.code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_zero_units_allowed(self, guard, user_repo):
        user_repo.seed("user-1", generation_count=20, last_reset_date=TODAY)
        result = await guard.reserve(user(), 0, now=NOW)
        assert result.remaining == 0


class TestWithoutStorage:
    """Test behavior when the persisted store is not configured."""

    @pytest.fixture
    def unconfigured_guard(self, clock):
        repo = InMemoryUserRepository(configured=False)
        return UsageGuard(
            ledger=QuotaLedger(repository=repo, clock=clock),
            rate_limiter=InMemoryRateLimiter(),
            counters=BoundedCounterStore(),
            telemetry=TelemetryEmitter(repository=RecordingEventRepository(configured=False)),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_emergency_allotment(self, unconfigured_guard):
        result = await unconfigured_guard.reserve(user(), 5, now=NOW)
        assert result.limit == 25
        assert result.remaining == 20
        assert result.burst_limit == 10

    @pytest.mark.asyncio
    async def test_gated_tool_not_configured(self, unconfigured_guard):
        error = await denial(unconfigured_guard.reserve(user(), 1, tool="live_rehearsal", now=NOW))
        assert error.code == ErrorCode.NOT_CONFIGURED
        assert error.status_code == 503

    @pytest.mark.asyncio
    async def test_status_not_configured(self, unconfigured_guard):
        error = await denial(unconfigured_guard.status(user(), now=NOW))
        assert error.code == ErrorCode.NOT_CONFIGURED


class TestStatus:
    """Test read-only usage status."""

    @pytest.mark.asyncio
    async def test_user_status(self, guard, user_repo):
        user_repo.seed("user-1", membership="performer", generation_count=5, last_reset_date=TODAY)
        await guard.reserve(user(), 1, now=NOW)

        status = await guard.status(user(), now=NOW)

        assert status.membership == "performer"
        assert status.used == 6
        assert status.remaining == 94
        assert status.burst_limit == 30
        assert status.burst_remaining == 29
        assert user_repo.rows["user-1"]["generation_count"] == 6

    @pytest.mark.asyncio
    async def test_anonymous_status(self, guard):
        await guard.reserve(GUEST, 2, now=NOW)

        status = await guard.status(GUEST, now=NOW)

        assert status.membership == "guest"
        assert status.used == 2
        assert status.remaining == 13
        assert status.burst_remaining == 7


class TestTelemetry:
    """Test that every decision is recorded."""

    @pytest.mark.asyncio
    async def test_allowed_event(self, guard, user_repo, telemetry, event_repo):
        user_repo.seed("user-1", last_reset_date=TODAY)
        context = RequestContext(
            request_id="req-1", endpoint="/api/ai/reserve", provider="gemini", model="gemini-2.5-flash"
        )

        await guard.reserve(user(), 2, context=context, now=NOW)
        await telemetry.flush()

        event = event_repo.events[0]
        assert event.request_id == "req-1"
        assert event.outcome == "ALLOWED"
        assert event.actor_type == "user"
        assert event.user_id == "user-1"
        assert event.charged_units == 2
        assert event.http_status == 200
        assert event.estimated_cost_usd == pytest.approx(0.0005)

    @pytest.mark.asyncio
    async def test_blocked_event(self, guard, user_repo, telemetry, event_repo):
        user_repo.seed("user-1", generation_count=20, last_reset_date=TODAY)

        await denial(guard.reserve(user(), 1, now=NOW))
        await telemetry.flush()

        event = event_repo.events[0]
        assert event.outcome == "BLOCKED_QUOTA"
        assert event.error_code == "USAGE_LIMIT_REACHED"
        assert event.charged_units == 0
        assert event.membership == "trial"

    @pytest.mark.asyncio
    async def test_guest_event_has_no_user(self, guard, telemetry, event_repo):
        await guard.reserve(GUEST, 1, now=NOW)
        await telemetry.flush()

        event = event_repo.events[0]
        assert event.actor_type == "guest"
        assert event.user_id is None
        assert event.identity_key == "ip:iphash-1"

    @pytest.mark.asyncio
    async def test_large_call_is_flagged(self, guard, user_repo, telemetry, event_repo):
        user_repo.seed("user-1", membership="professional", last_reset_date=TODAY)

        await guard.reserve(user(), 60, now=NOW)
        await telemetry.flush()

        assert len(event_repo.anomalies) == 1
        assert event_repo.anomalies[0].reason == "large_single_call_units"

    @pytest.mark.asyncio
    async def test_telemetry_failure_does_not_block(self, guard, user_repo, telemetry, event_repo):
        user_repo.seed("user-1", last_reset_date=TODAY)
        event_repo.fail = True

        result = await guard.reserve(user(), 1, now=NOW)
        await telemetry.flush()

        assert result.remaining == 19
        assert telemetry.failed == 1

    @pytest.mark.asyncio
    async def test_unauthorized_event(self, guard, telemetry, event_repo):
        await denial(guard.reserve_live_minutes(GUEST, 1, now=NOW))
        await telemetry.flush()

        event = event_repo.events[0]
        assert event.outcome == "UNAUTHORIZED"
        assert event.error_code == "UNAUTHORIZED"
        assert event.http_status == 401
        assert event.tool == "live_rehearsal"

    @pytest.mark.asyncio
    async def test_invalid_minutes_event(self, guard, telemetry, event_repo):
        await denial(guard.reserve_live_minutes(user(), -1, now=NOW))
        await telemetry.flush()

        event = event_repo.events[0]
        assert event.outcome == "ERROR"
        assert event.error_code == "INVALID_REQUEST"
        assert event.charged_units == 0
