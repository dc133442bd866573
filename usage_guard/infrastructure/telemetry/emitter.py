"""Fire-and-forget usage telemetry.

Events are pushed onto a bounded queue and written by a background task, so
the request path never waits on the database. When the queue is full the new
event is dropped and counted; write failures are logged and counted. Nothing
here raises into the caller.
"""

import asyncio
from enum import Enum
from typing import Optional, Tuple, Union

from usage_guard.config import config
from usage_guard.core.logging import logger
from usage_guard.infrastructure.database.models import AnomalyFlagRecord, UsageEventRecord
from usage_guard.infrastructure.database.repositories import UsageEventRepository

QueueItem = Tuple[str, Union[UsageEventRecord, AnomalyFlagRecord]]


class UsageOutcome(str, Enum):
    """Decision recorded for one guarded request."""

    ALLOWED = "ALLOWED"
    BLOCKED_RATE_LIMIT = "BLOCKED_RATE_LIMIT"
    BLOCKED_QUOTA = "BLOCKED_QUOTA"
    BLOCKED_TIER = "BLOCKED_TIER"
    UNAUTHORIZED = "UNAUTHORIZED"
    ERROR = "ERROR"


class TelemetryEmitter:
    """Buffered writer for usage events and anomaly flags."""

    def __init__(
        self,
        repository: Optional[UsageEventRepository] = None,
        max_queue: Optional[int] = None,
        anomaly_threshold: Optional[int] = None,
    ):
        """Initialize emitter.

        Args:
            repository: UsageEventRepository instance (optional)
            max_queue: Queue bound before events are dropped
            anomaly_threshold: Units per call at or above which a flag is raised
        """
        self._repo = repository or UsageEventRepository()
        self.max_queue = max_queue or config.telemetry_queue_size()
        self.anomaly_threshold = anomaly_threshold or config.anomaly_unit_threshold()
        self._queue: "asyncio.Queue[QueueItem]" = asyncio.Queue(maxsize=self.max_queue)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0
        self.failed = 0
        self.written = 0

        if not self._repo.is_configured():
            logger.warning("telemetry_disabled", reason="Supabase not configured")

    @property
    def enabled(self) -> bool:
        return self._repo.is_configured()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def record(self, event: UsageEventRecord) -> None:
        """Queue a usage event; also flag it when the unit cost is suspicious."""
        if not self.enabled:
            return

        self._enqueue(("event", event))

        if event.units is not None and event.units >= self.anomaly_threshold:
            self.flag_anomaly(
                AnomalyFlagRecord(
                    request_id=event.request_id,
                    identity_key=event.identity_key,
                    user_id=event.user_id,
                    ip_hash=event.ip_hash,
                    reason="large_single_call_units",
                    severity="high" if event.units >= self.anomaly_threshold * 4 else "medium",
                    metadata={
                        "units": event.units,
                        "threshold": self.anomaly_threshold,
                        "tool": event.tool,
                        "outcome": event.outcome,
                    },
                )
            )

    def flag_anomaly(self, flag: AnomalyFlagRecord) -> None:
        """Queue an advisory anomaly flag."""
        if not self.enabled:
            return
        logger.warning(
            "usage_anomaly_flagged",
            identity=flag.identity_key,
            reason=flag.reason,
            severity=flag.severity,
        )
        self._enqueue(("anomaly", flag))

    def _enqueue(self, item: QueueItem) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("telemetry_dropped", kind=item[0], dropped=self.dropped)

    async def _write(self, item: QueueItem) -> None:
        kind, record = item
        try:
            if kind == "anomaly":
                await asyncio.to_thread(self._repo.insert_anomaly, record)
            else:
                await asyncio.to_thread(self._repo.insert_event, record)
            self.written += 1
        except Exception as e:
            # Never break production calls for telemetry
            self.failed += 1
            logger.error(
                "telemetry_insert_failed",
                kind=kind,
                request_id=record.request_id,
                error=str(e),
            )

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._write(item)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the background flush task on the running loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
            logger.debug("telemetry_worker_started", max_queue=self.max_queue)

    async def flush(self) -> None:
        """Write everything currently queued."""
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._write(item)
            finally:
                self._queue.task_done()

    async def stop(self, timeout: float = 5.0) -> None:
        """Let the worker drain the queue, then stop it."""
        if self._worker is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout)
            except asyncio.TimeoutError:
                logger.warning("telemetry_drain_timeout", pending=self.pending)
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.flush()
        logger.info(
            "telemetry_stopped",
            written=self.written,
            failed=self.failed,
            dropped=self.dropped,
        )
