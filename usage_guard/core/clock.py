"""Reset-boundary clock.

Maps instants onto usage windows. A usage day starts at ``reset_hour`` on the
local wall clock of ``tz_name``; the monthly window starts at the same hour on
the first of the month. Burst windows are plain UTC minutes.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from usage_guard.config import config
from usage_guard.core.logging import logger


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or datetime) to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    try:
        return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


class ResetClock:
    """Day, month and minute window arithmetic for usage counters."""

    def __init__(self, tz_name: str = "UTC", reset_hour: int = 0):
        if not 0 <= int(reset_hour) <= 23:
            raise ValueError(f"reset_hour must be between 0 and 23, got {reset_hour}")
        self.tz_name = tz_name
        self.reset_hour = int(reset_hour)
        self._tz: tzinfo = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)

    @classmethod
    def from_config(cls) -> "ResetClock":
        """Build from USAGE_RESET_TZ / USAGE_RESET_HOUR_LOCAL, falling back to UTC midnight."""
        tz_name = config.usage_reset_tz()
        reset_hour = config.usage_reset_hour_local()
        try:
            return cls(tz_name, reset_hour)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(
                "reset_clock_misconfigured",
                tz=tz_name,
                reset_hour=reset_hour,
                error=str(e),
                fallback="UTC midnight",
            )
            return cls("UTC", 0)

    # Daily window

    def _usage_date(self, instant: datetime) -> date:
        local = _as_utc(instant).astimezone(self._tz)
        return (local.replace(tzinfo=None) - timedelta(hours=self.reset_hour)).date()

    def day_key(self, instant: datetime) -> str:
        """Key (YYYY-MM-DD) of the usage day containing ``instant``."""
        return self._usage_date(instant).isoformat()

    def next_reset(self, instant: datetime) -> datetime:
        """Absolute UTC instant at which the current usage day ends."""
        boundary_day = self._usage_date(instant) + timedelta(days=1)
        candidate = self._local_to_utc(datetime.combine(boundary_day, time(self.reset_hour)))
        # A wall time skipped by DST can resolve at or before ``instant``
        while candidate <= _as_utc(instant):
            boundary_day += timedelta(days=1)
            candidate = self._local_to_utc(datetime.combine(boundary_day, time(self.reset_hour)))
        return candidate

    # Monthly window

    def month_key(self, instant: datetime) -> str:
        """Key (YYYY-MM) of the usage month containing ``instant``."""
        usage_date = self._usage_date(instant)
        return f"{usage_date.year:04d}-{usage_date.month:02d}"

    def next_month_reset(self, instant: datetime) -> datetime:
        """Absolute UTC instant at which the current usage month ends."""
        usage_date = self._usage_date(instant)
        if usage_date.month == 12:
            first = date(usage_date.year + 1, 1, 1)
        else:
            first = date(usage_date.year, usage_date.month + 1, 1)
        return self._local_to_utc(datetime.combine(first, time(self.reset_hour)))

    # Burst window

    @staticmethod
    def minute_key(instant: datetime) -> str:
        """UTC minute bucket (YYYY-MM-DDTHH:MM)."""
        return _as_utc(instant).strftime("%Y-%m-%dT%H:%M")

    @staticmethod
    def next_minute(instant: datetime) -> datetime:
        """Start of the UTC minute after ``instant``."""
        utc = _as_utc(instant).replace(second=0, microsecond=0)
        return utc + timedelta(minutes=1)

    # Conversion

    def _offset_at(self, utc_instant: datetime) -> timedelta:
        return utc_instant.astimezone(self._tz).utcoffset() or timedelta(0)

    def _local_to_utc(self, wall: datetime) -> datetime:
        """Convert a naive local wall-clock time to UTC.

        The offset is first taken at the wall time read as UTC, then re-read at
        the resulting candidate; a second pass absorbs an offset change between
        the two (DST transitions).
        """
        offset = self._offset_at(wall.replace(tzinfo=timezone.utc))
        candidate = (wall - offset).replace(tzinfo=timezone.utc)
        refined = self._offset_at(candidate)
        if refined != offset:
            candidate = (wall - refined).replace(tzinfo=timezone.utc)
        return candidate

    def __repr__(self) -> str:
        return f"ResetClock(tz={self.tz_name!r}, reset_hour={self.reset_hour})"
