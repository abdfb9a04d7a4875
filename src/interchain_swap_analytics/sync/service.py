"""Background scheduler for the order sync engine.

Runs one cycle at startup and then every ``sync_interval_seconds``. Cycles are
single-flight: an invocation that arrives while another cycle is running is
skipped instead of running concurrently.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from interchain_swap_analytics.sync.engine import OrderSyncEngine, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 300  # 5 minutes
DEFAULT_DRAIN_TIMEOUT_SECONDS = 120.0


class SyncState(str, Enum):
    """State of the order sync service."""

    STOPPED = "stopped"
    STARTING = "starting"
    SYNCING = "syncing"
    IDLE = "idle"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class SyncStats:
    """Statistics for the order sync process."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    skipped_syncs: int = 0
    records_inserted: int = 0
    last_sync_time: datetime | None = None
    last_sync_duration_seconds: float = 0.0
    last_watermark: datetime | None = None
    last_error: str | None = None


class OrderSyncService:
    """Periodic, non-overlapping driver for ``OrderSyncEngine``.

    Example:
        ```python
        service = OrderSyncService(engine, sync_interval_seconds=300)
        await service.start()
        ...
        await service.stop()
        ```
    """

    def __init__(
        self,
        engine: OrderSyncEngine,
        *,
        sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECONDS,
        drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        self._engine = engine
        self._sync_interval = sync_interval_seconds
        self._drain_timeout = drain_timeout_seconds

        self._state = SyncState.STOPPED
        self._stats = SyncStats()
        self._lock = asyncio.Lock()
        self._sync_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SyncState:
        """Current sync state."""
        return self._state

    @property
    def stats(self) -> SyncStats:
        """Current sync statistics."""
        return self._stats

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        """Run an initial cycle and start the periodic loop.

        A failed initial cycle is logged and retried on the next interval.
        """
        if self._state != SyncState.STOPPED:
            logger.warning("Cannot start sync: already in state %s", self._state.value)
            return

        self._state = SyncState.STARTING
        self._stop_event.clear()

        try:
            await self.run_once()
        except Exception as e:
            logger.error("Initial sync cycle failed; retrying in %ds: %s", self._sync_interval, e)

        self._sync_task = asyncio.create_task(self._sync_loop())
        if self._state != SyncState.ERROR:
            self._state = SyncState.IDLE
        logger.info("Order sync started (interval=%ds)", self._sync_interval)

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight cycle finish first."""
        if self._state == SyncState.STOPPED:
            return

        self._state = SyncState.STOPPING
        self._stop_event.set()

        if self._sync_task:
            try:
                await asyncio.wait_for(asyncio.shield(self._sync_task), timeout=self._drain_timeout)
            except TimeoutError:
                logger.warning("In-flight sync cycle did not drain within %.0fs; cancelling", self._drain_timeout)
            self._sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sync_task
            self._sync_task = None

        self._state = SyncState.STOPPED
        logger.info("Order sync stopped")

    async def run_once(self) -> SyncResult:
        """Run a single cycle now unless one is already in flight.

        Returns:
            The cycle's result, or a ``skipped`` result for an overlapping call.

        Raises:
            SwapAnalyticsError: Whatever the engine raised; the cycle is counted
                as failed and will be retried on the next interval.
        """
        if self._lock.locked():
            logger.info("Sync cycle already in progress; skipping overlapping invocation")
            self._stats.skipped_syncs += 1
            return SyncResult(watermark=None, selected=0, inserted=0, skipped=True)

        async with self._lock:
            previous_state = self._state
            self._state = SyncState.SYNCING
            start_time = datetime.now(UTC)
            self._stats.total_syncs += 1

            try:
                result = await self._engine.sync()
            except Exception as e:
                self._stats.failed_syncs += 1
                self._stats.last_error = str(e)
                self._state = SyncState.ERROR
                logger.error("Sync cycle failed: %s", e)
                raise

            end_time = datetime.now(UTC)
            self._stats.successful_syncs += 1
            self._stats.records_inserted += result.inserted
            self._stats.last_sync_time = end_time
            self._stats.last_sync_duration_seconds = (end_time - start_time).total_seconds()
            self._stats.last_watermark = result.watermark
            self._stats.last_error = None
            self._state = previous_state if previous_state == SyncState.STOPPING else SyncState.IDLE
            logger.info(
                "Sync cycle finished in %.2fs: %d inserted",
                self._stats.last_sync_duration_seconds,
                result.inserted,
            )
            return result

    async def _sync_loop(self) -> None:
        """Background loop that periodically runs sync cycles."""
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._sync_interval)
                    break
                except TimeoutError:
                    pass

                if self._stop_event.is_set():
                    break

                await self.run_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                # Already logged and counted by run_once; retry next interval.
                logger.debug("Sync loop continuing after failure: %s", e)
