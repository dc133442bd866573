"""Usage event repository.

Append-only inserts for usage decisions and anomaly flags.
"""

from usage_guard.infrastructure.database.models import AnomalyFlagRecord, UsageEventRecord
from usage_guard.infrastructure.database.repositories.base import BaseRepository


class UsageEventRepository(BaseRepository[UsageEventRecord]):
    """Repository for ai_usage_events and ai_anomaly_flags inserts."""

    def table_name(self) -> str:
        """Return table name."""
        return "ai_usage_events"

    def anomaly_table_name(self) -> str:
        return "ai_anomaly_flags"

    def insert_event(self, record: UsageEventRecord) -> None:
        """Insert one usage decision."""
        self.db.table(self.table_name()).insert(record.to_row()).execute()

    def insert_anomaly(self, record: AnomalyFlagRecord) -> None:
        """Insert one anomaly flag."""
        self.db.table(self.anomaly_table_name()).insert(record.to_row()).execute()
