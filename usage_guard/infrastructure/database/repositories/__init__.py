"""Repository implementations for the usage guard."""

from usage_guard.infrastructure.database.repositories.base import BaseRepository
from usage_guard.infrastructure.database.repositories.usage_events import UsageEventRepository
from usage_guard.infrastructure.database.repositories.users import UserUsageRepository

__all__ = [
    "BaseRepository",
    "UsageEventRepository",
    "UserUsageRepository",
]
