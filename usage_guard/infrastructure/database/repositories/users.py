"""User usage repository.

Reads and conditionally updates the usage columns of the ``users`` table.
Every write is a compare-and-set: the update is filtered on the values the
caller read, and reports whether a row actually matched. A False return means
another request changed the row first and the caller must re-read.
"""

from datetime import datetime
from typing import Dict, Optional

from usage_guard.core.logging import logger
from usage_guard.core.tiers import MONTHLY_TOOL_QUOTAS, Tier, monthly_defaults
from usage_guard.infrastructure.database.models import UsageProfile
from usage_guard.infrastructure.database.repositories.base import BaseRepository

QUOTA_FIELDS = tuple(MONTHLY_TOOL_QUOTAS)

PROFILE_COLUMNS = ", ".join(
    (
        "id",
        "membership",
        "is_admin",
        "generation_count",
        "last_reset_date",
        "quota_reset_date",
    )
    + QUOTA_FIELDS
)


def _match(query, column: str, value):
    """Filter on equality, using IS NULL for missing values."""
    if value is None:
        return query.is_(column, "null")
    return query.eq(column, value)


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)


class UserUsageRepository(BaseRepository[UsageProfile]):
    """Repository for per-user usage counters and monthly tool balances."""

    def table_name(self) -> str:
        """Return table name."""
        return "users"

    @staticmethod
    def _to_profile(row: Dict) -> UsageProfile:
        return UsageProfile(
            user_id=row["id"],
            membership=row.get("membership") or "trial",
            is_admin=bool(row.get("is_admin")),
            generation_count=_optional_int(row.get("generation_count")),
            last_reset_date=row.get("last_reset_date"),
            quota_reset_date=row.get("quota_reset_date"),
            tool_balances={field: row.get(field) for field in QUOTA_FIELDS},
        )

    def get_profile(self, user_id: str) -> Optional[UsageProfile]:
        """Load the usage columns for a user, or None when no row exists."""
        result = (
            self.db.table(self.table_name())
            .select(PROFILE_COLUMNS)
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return self._to_profile(result.data[0])

    def create_profile(self, user_id: str, now: datetime) -> UsageProfile:
        """Create a trial profile if none exists, then return the stored row.

        Idempotent: concurrent first requests race on the same upsert and the
        losers keep the winner's row.
        """
        stamp = now.isoformat()
        row = {
            "id": user_id,
            "membership": Tier.TRIAL.value,
            "generation_count": 0,
            "last_reset_date": stamp,
            "quota_reset_date": stamp,
            **monthly_defaults(Tier.TRIAL),
        }
        (
            self.db.table(self.table_name())
            .upsert(row, on_conflict="id", ignore_duplicates=True)
            .execute()
        )
        logger.info("usage_profile_created", user_id=user_id)

        profile = self.get_profile(user_id)
        if profile is None:
            # Read-after-write miss on a replica; the row we wrote is authoritative
            return self._to_profile(row)
        return profile

    def reset_daily(self, user_id: str, expected_reset: Optional[str], now: datetime) -> bool:
        """Zero generation_count if last_reset_date still equals ``expected_reset``."""
        query = (
            self.db.table(self.table_name())
            .update({"generation_count": 0, "last_reset_date": now.isoformat()})
            .eq("id", user_id)
        )
        result = _match(query, "last_reset_date", expected_reset).execute()
        return bool(result.data)

    def reset_monthly(
        self,
        user_id: str,
        balances: Dict[str, int],
        expected_reset: Optional[str],
        now: datetime,
    ) -> bool:
        """Restore monthly tool balances if quota_reset_date still equals ``expected_reset``."""
        query = (
            self.db.table(self.table_name())
            .update({**balances, "quota_reset_date": now.isoformat()})
            .eq("id", user_id)
        )
        result = _match(query, "quota_reset_date", expected_reset).execute()
        return bool(result.data)

    def fill_tool_balance(self, user_id: str, quota_field: str, balance: int) -> bool:
        """Set one monthly balance if it is still NULL; other balances are left alone."""
        result = (
            self.db.table(self.table_name())
            .update({quota_field: balance})
            .eq("id", user_id)
            .is_(quota_field, "null")
            .execute()
        )
        return bool(result.data)

    def charge(
        self,
        user_id: str,
        expected_count: Optional[int],
        new_count: int,
        quota_field: Optional[str] = None,
        expected_balance: Optional[int] = None,
        new_balance: Optional[int] = None,
    ) -> bool:
        """Write the charged counters if the row still holds the values read."""
        update = {"generation_count": new_count}
        if quota_field:
            update[quota_field] = new_balance

        query = (
            self.db.table(self.table_name())
            .update(update)
            .eq("id", user_id)
        )
        query = _match(query, "generation_count", expected_count)
        if quota_field:
            query = _match(query, quota_field, expected_balance)

        result = query.execute()
        return bool(result.data)
