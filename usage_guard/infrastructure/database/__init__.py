"""Database module for the usage guard.

Provides Supabase client singleton and repository pattern for database operations.
"""

from usage_guard.infrastructure.database.client import SupabaseClient
from usage_guard.infrastructure.database.models import (
    AnomalyFlagRecord,
    UsageEventRecord,
    UsageProfile,
)
from usage_guard.infrastructure.database.repositories import (
    BaseRepository,
    UsageEventRepository,
    UserUsageRepository,
)

__all__ = [
    "SupabaseClient",
    "AnomalyFlagRecord",
    "UsageEventRecord",
    "UsageProfile",
    "BaseRepository",
    "UsageEventRepository",
    "UserUsageRepository",
]
