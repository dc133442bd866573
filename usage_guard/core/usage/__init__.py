"""Usage enforcement: quota ledger and the request guard."""

from usage_guard.core.usage.guard import (
    RequestContext,
    ReservationResult,
    UsageGuard,
    UsageStatus,
)
from usage_guard.core.usage.quota import QuotaLedger, QuotaSnapshot

__all__ = [
    "QuotaLedger",
    "QuotaSnapshot",
    "RequestContext",
    "ReservationResult",
    "UsageGuard",
    "UsageStatus",
]
