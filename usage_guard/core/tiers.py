"""Membership tiers and the static policy tables keyed off them.

Legacy membership strings stored in older rows are normalized here and only
here; every table below is keyed by the canonical ``Tier`` enum.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Tier(str, Enum):
    """Canonical membership tiers, ordered by plan level."""

    EXPIRED = "expired"
    TRIAL = "trial"
    PERFORMER = "performer"
    PROFESSIONAL = "professional"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK: Dict[Tier, int] = {
    Tier.EXPIRED: 0,
    Tier.TRIAL: 1,
    Tier.PERFORMER: 2,
    Tier.PROFESSIONAL: 3,
    Tier.ADMIN: 4,
}

LEGACY_ALIASES: Dict[str, Tier] = {
    "free": Tier.TRIAL,
    "amateur": Tier.PERFORMER,
    "semi-pro": Tier.PERFORMER,
}


def normalize_tier(raw: Optional[str]) -> Tier:
    """Map a stored membership string (including legacy aliases) to a Tier.

    Total: unrecognized or empty values resolve to ``Tier.TRIAL``.
    """
    if isinstance(raw, Tier):
        return raw
    if not raw:
        return Tier.TRIAL
    value = str(raw).strip().lower()
    if value in LEGACY_ALIASES:
        return LEGACY_ALIASES[value]
    try:
        return Tier(value)
    except ValueError:
        return Tier.TRIAL


def tier_allows(tier: Tier, min_tier: Tier) -> bool:
    """Check whether ``tier`` ranks at or above ``min_tier``."""
    return tier.rank >= min_tier.rank


# Units per usage day
DAILY_UNIT_LIMITS: Dict[Tier, int] = {
    Tier.EXPIRED: 0,
    Tier.TRIAL: 20,
    Tier.PERFORMER: 100,
    Tier.PROFESSIONAL: 10000,
    Tier.ADMIN: 100000,
}

# Requests per UTC minute, enforced even when daily units remain
BURST_LIMITS: Dict[Tier, int] = {
    Tier.EXPIRED: 0,
    Tier.TRIAL: 20,
    Tier.PERFORMER: 30,
    Tier.PROFESSIONAL: 120,
    Tier.ADMIN: 240,
}


def daily_unit_limit(tier: Tier) -> int:
    """Daily unit budget for a tier."""
    return DAILY_UNIT_LIMITS[normalize_tier(tier)]


def burst_per_minute(tier: Tier) -> int:
    """Per-minute request cap for a tier."""
    return BURST_LIMITS[normalize_tier(tier)]


@dataclass(frozen=True)
class CallerPolicy:
    """Fixed allotment for callers without a persisted profile."""

    membership: str
    daily_units: int
    burst_per_minute: int


# Anonymous callers are tracked in-process only
ANONYMOUS_POLICY = CallerPolicy(membership="guest", daily_units=15, burst_per_minute=8)

# Applied to every caller when the persisted store is not configured
EMERGENCY_POLICY = CallerPolicy(membership="guest", daily_units=25, burst_per_minute=10)


@dataclass(frozen=True)
class ToolPolicy:
    """Access gate and monthly balance for a named tool."""

    name: str
    min_tier: Tier
    monthly_quota_field: str


TOOL_POLICIES: Dict[str, ToolPolicy] = {
    "live_rehearsal": ToolPolicy("live_rehearsal", Tier.PERFORMER, "quota_live_audio_minutes"),
    "video_rehearsal": ToolPolicy("video_rehearsal", Tier.PROFESSIONAL, "quota_video_uploads"),
    "image_generation": ToolPolicy("image_generation", Tier.PERFORMER, "quota_image_gen"),
}

MONTHLY_TOOL_QUOTAS: Dict[str, Dict[Tier, int]] = {
    "quota_live_audio_minutes": {
        Tier.PERFORMER: 60,
        Tier.PROFESSIONAL: 300,
        Tier.ADMIN: 1000,
    },
    "quota_video_uploads": {
        Tier.PROFESSIONAL: 20,
        Tier.ADMIN: 100,
    },
    "quota_image_gen": {
        Tier.PERFORMER: 30,
        Tier.PROFESSIONAL: 150,
        Tier.ADMIN: 500,
    },
}


def get_tool_policy(tool: Optional[str]) -> Optional[ToolPolicy]:
    """Look up the gate for a tool name; None for ungated tools."""
    if not tool:
        return None
    return TOOL_POLICIES.get(tool.strip().lower())


def monthly_tool_quota(field: str, tier: Tier) -> int:
    """Tier-default monthly balance for a quota field."""
    return MONTHLY_TOOL_QUOTAS.get(field, {}).get(normalize_tier(tier), 0)


def monthly_defaults(tier: Tier) -> Dict[str, int]:
    """Tier-default balances for every monthly quota field."""
    return {field: monthly_tool_quota(field, tier) for field in MONTHLY_TOOL_QUOTAS}
