"""Database models for the usage guard.

Type-safe dataclasses representing database records.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from usage_guard.core.clock import parse_timestamp
from usage_guard.core.tiers import Tier, normalize_tier


@dataclass
class UsageProfile:
    """Usage columns of a row in the users table.

    ``generation_count``, ``last_reset_date`` and ``quota_reset_date`` keep the
    raw stored value (NULL included) so conditional updates can match the row
    exactly as it was read. Use ``used_units`` for arithmetic.
    """

    user_id: str
    membership: Optional[str] = "trial"
    is_admin: bool = False
    generation_count: Optional[int] = 0
    last_reset_date: Optional[str] = None
    quota_reset_date: Optional[str] = None
    tool_balances: Dict[str, Optional[int]] = field(default_factory=dict)

    @property
    def tier(self) -> Tier:
        if self.is_admin:
            return Tier.ADMIN
        return normalize_tier(self.membership)

    @property
    def used_units(self) -> int:
        """Units charged this usage day; a NULL counter counts as zero."""
        return self.generation_count or 0

    @property
    def last_reset_at(self) -> Optional[datetime]:
        return parse_timestamp(self.last_reset_date)

    @property
    def quota_reset_at(self) -> Optional[datetime]:
        return parse_timestamp(self.quota_reset_date)


@dataclass
class UsageEventRecord:
    """Represents a record in the ai_usage_events table."""

    request_id: str
    actor_type: str
    identity_key: str
    outcome: str
    user_id: Optional[str] = None
    ip_hash: Optional[str] = None
    tool: Optional[str] = None
    endpoint: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    http_status: Optional[int] = None
    error_code: Optional[str] = None
    retryable: Optional[bool] = None
    units: Optional[int] = None
    charged_units: Optional[int] = None
    membership: Optional[str] = None
    latency_ms: Optional[int] = None
    user_agent: Optional[str] = None
    estimated_cost_usd: Optional[float] = None

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        # Avoid huge UA strings
        if row["user_agent"] and len(row["user_agent"]) > 500:
            row["user_agent"] = row["user_agent"][:500]
        return row


@dataclass
class AnomalyFlagRecord:
    """Represents a record in the ai_anomaly_flags table."""

    request_id: str
    identity_key: str
    reason: str
    user_id: Optional[str] = None
    ip_hash: Optional[str] = None
    severity: str = "medium"
    metadata: Optional[Dict[str, Any]] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)
