"""Shared fixtures for usage guard tests.

The repositories below keep rows in a dict but honor the same
compare-and-set contract as the Supabase-backed ones.
"""

import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import jwt
import pytest

from usage_guard.core.clock import ResetClock
from usage_guard.core.tiers import Tier, monthly_defaults
from usage_guard.core.usage import QuotaLedger, UsageGuard
from usage_guard.infrastructure.database.models import AnomalyFlagRecord, UsageEventRecord
from usage_guard.infrastructure.database.repositories import (
    UsageEventRepository,
    UserUsageRepository,
)
from usage_guard.infrastructure.database.repositories.users import QUOTA_FIELDS
from usage_guard.infrastructure.rate_limit import BoundedCounterStore, InMemoryRateLimiter
from usage_guard.infrastructure.telemetry import TelemetryEmitter

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
JWT_SECRET = "usage-guard-test-secret-0123456789abcdef"

_ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_JWT_SECRET",
    "TELEMETRY_SALT",
    "USAGE_RESET_TZ",
    "USAGE_RESET_HOUR_LOCAL",
    "COST_TABLE_JSON",
    "RATE_LIMIT_BACKEND",
    "RATE_LIMIT_MAX_BUCKETS",
    "TELEMETRY_QUEUE_SIZE",
    "ANOMALY_UNIT_THRESHOLD",
    "APP_ENV",
    "VERCEL_ENV",
)


class InMemoryUserRepository(UserUsageRepository):
    """users table held in memory."""

    def __init__(self, configured: bool = True):
        super().__init__()
        self.configured = configured
        self.rows: Dict[str, Dict] = {}
        self.fail_on: set = set()
        # Units another request charges right before each of our charge writes
        self.interfering_charges: List[int] = []

    def is_configured(self) -> bool:
        return self.configured

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} failed")

    def seed(
        self,
        user_id: str,
        membership: Optional[str] = "trial",
        generation_count: int = 0,
        last_reset_date: Optional[str] = None,
        quota_reset_date: Optional[str] = None,
        is_admin: bool = False,
        **balances,
    ) -> Dict:
        row = {
            "id": user_id,
            "membership": membership,
            "is_admin": is_admin,
            "generation_count": generation_count,
            "last_reset_date": last_reset_date,
            "quota_reset_date": quota_reset_date,
        }
        row.update({field: None for field in QUOTA_FIELDS})
        row.update(balances)
        self.rows[user_id] = row
        return row

    def get_profile(self, user_id: str):
        self._check("get_profile")
        row = self.rows.get(user_id)
        return self._to_profile(dict(row)) if row else None

    def create_profile(self, user_id: str, now: datetime):
        self._check("create_profile")
        if user_id not in self.rows:
            self.seed(
                user_id,
                membership=Tier.TRIAL.value,
                last_reset_date=now.isoformat(),
                quota_reset_date=now.isoformat(),
                **monthly_defaults(Tier.TRIAL),
            )
        return self._to_profile(dict(self.rows[user_id]))

    def reset_daily(self, user_id, expected_reset, now) -> bool:
        self._check("reset_daily")
        row = self.rows.get(user_id)
        if row is None or row["last_reset_date"] != expected_reset:
            return False
        row["generation_count"] = 0
        row["last_reset_date"] = now.isoformat()
        return True

    def reset_monthly(self, user_id, balances, expected_reset, now) -> bool:
        self._check("reset_monthly")
        row = self.rows.get(user_id)
        if row is None or row["quota_reset_date"] != expected_reset:
            return False
        row.update(balances)
        row["quota_reset_date"] = now.isoformat()
        return True

    def fill_tool_balance(self, user_id, quota_field, balance) -> bool:
        self._check("fill_tool_balance")
        row = self.rows.get(user_id)
        if row is None or row.get(quota_field) is not None:
            return False
        row[quota_field] = balance
        return True

    def charge(
        self,
        user_id,
        expected_count,
        new_count,
        quota_field=None,
        expected_balance=None,
        new_balance=None,
    ) -> bool:
        self._check("charge")
        row = self.rows.get(user_id)
        if row is None:
            return False
        if self.interfering_charges:
            row["generation_count"] = (row["generation_count"] or 0) + self.interfering_charges.pop(0)

        if row["generation_count"] != expected_count:
            return False
        if quota_field and row.get(quota_field) != expected_balance:
            return False

        row["generation_count"] = new_count
        if quota_field:
            row[quota_field] = new_balance
        return True


class RecordingEventRepository(UsageEventRepository):
    """Collects inserted events and flags instead of writing them."""

    def __init__(self, configured: bool = True, fail: bool = False):
        super().__init__()
        self.configured = configured
        self.fail = fail
        self.events: List[UsageEventRecord] = []
        self.anomalies: List[AnomalyFlagRecord] = []

    def is_configured(self) -> bool:
        return self.configured

    def insert_event(self, record: UsageEventRecord) -> None:
        if self.fail:
            raise RuntimeError("insert failed")
        self.events.append(record)

    def insert_anomaly(self, record: AnomalyFlagRecord) -> None:
        if self.fail:
            raise RuntimeError("insert failed")
        self.anomalies.append(record)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Run every test without ambient usage guard configuration."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return ResetClock("UTC", 0)


@pytest.fixture
def user_repo():
    return InMemoryUserRepository()


@pytest.fixture
def event_repo():
    return RecordingEventRepository()


@pytest.fixture
def telemetry(event_repo):
    return TelemetryEmitter(repository=event_repo, max_queue=100, anomaly_threshold=50)


@pytest.fixture
def ledger(user_repo, clock):
    return QuotaLedger(repository=user_repo, clock=clock)


@pytest.fixture
def guard(ledger, telemetry, clock):
    return UsageGuard(
        ledger=ledger,
        rate_limiter=InMemoryRateLimiter(),
        counters=BoundedCounterStore(),
        telemetry=telemetry,
        clock=clock,
    )


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    return JWT_SECRET


@pytest.fixture
def make_token(jwt_secret):
    """Build a signed Supabase-style access token for a user id."""

    def _make(user_id: str, expires_in: int = 3600, audience: str = "authenticated") -> str:
        payload = {"sub": user_id, "aud": audience, "exp": int(time.time()) + expires_in}
        return jwt.encode(payload, jwt_secret, algorithm="HS256")

    return _make
