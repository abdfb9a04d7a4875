"""Service orchestrator for Interchain Swap Analytics.

This module provides the Pipeline class that wires the two stores, the chain
resolvers, the order sync service, the timestamp backfill job, and the
analysis query service, and owns their start/stop lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from interchain_swap_analytics.analysis.query import AnalysisQueryService
from interchain_swap_analytics.backfill import BackfillResult, TimestampBackfillJob
from interchain_swap_analytics.chain.registry import ChainTimestampResolver, build_chain_resolver
from interchain_swap_analytics.config import Settings, get_settings
from interchain_swap_analytics.storage.database import DatabaseManager
from interchain_swap_analytics.sync.engine import OrderSyncEngine
from interchain_swap_analytics.sync.service import OrderSyncService

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    backfill_runs: int = 0
    last_backfill: BackfillResult | None = None
    last_backfill_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Owns every long-lived component of the service.

    Pipeline flow:
        Source store -> Order Sync -> order_analysis <- Timestamp Backfill
        order_analysis -> Analysis Query Service -> HTTP API

    Example:
        ```python
        from interchain_swap_analytics.config import get_settings
        from interchain_swap_analytics.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Sync runs every SYNC_INTERVAL_SECONDS until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        analysis_db: DatabaseManager | None = None,
        source_db: DatabaseManager | None = None,
        resolver: ChainTimestampResolver | None = None,
        backfill_on_startup: bool | None = None,
        sync_enabled: bool = True,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            analysis_db: Pre-built analysis store manager; built from settings if omitted.
            source_db: Pre-built source store manager; built from settings if omitted.
            resolver: Pre-built chain resolver registry; built from settings if omitted.
            backfill_on_startup: Overrides settings.backfill.on_startup.
            sync_enabled: Build the source store and order sync service. When
                False the pipeline only backfills and answers queries, and
                never reads the source store.
        """
        self._settings = settings or get_settings()
        self._backfill_on_startup = (
            backfill_on_startup
            if backfill_on_startup is not None
            else self._settings.backfill.on_startup
        )
        self._sync_enabled = sync_enabled

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._provided_analysis_db = analysis_db
        self._provided_source_db = source_db
        self._provided_resolver = resolver

        # Components (initialized in start())
        self._analysis_db: DatabaseManager | None = None
        self._source_db: DatabaseManager | None = None
        self._resolver: ChainTimestampResolver | None = None
        self._sync_service: OrderSyncService | None = None
        self._backfill_job: TimestampBackfillJob | None = None
        self._query_service: AnalysisQueryService | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._backfill_lock = asyncio.Lock()
        self._backfill_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def sync_service(self) -> OrderSyncService | None:
        return self._sync_service

    @property
    def backfill_job(self) -> TimestampBackfillJob | None:
        return self._backfill_job

    @property
    def query_service(self) -> AnalysisQueryService:
        if self._query_service is None:
            raise RuntimeError("Pipeline is not running")
        return self._query_service

    async def start(self) -> None:
        """Start the pipeline.

        Builds all components. With sync enabled it runs the initial sync
        cycle and starts the periodic loop. A backfill pass is scheduled if
        enabled.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Lets an in-flight sync cycle drain, cancels a pending backfill, and
        releases RPC sessions and database pools.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        logger.debug("Initializing database managers...")
        self._analysis_db = self._provided_analysis_db or DatabaseManager(
            settings.analysis_db.url,
            pool_size=settings.analysis_db.pool_size,
            query_timeout_seconds=settings.analysis_db.query_timeout_seconds,
        )
        if self._sync_enabled:
            self._source_db = self._provided_source_db or DatabaseManager(
                settings.source_db.url,
                pool_size=settings.source_db.pool_size,
                query_timeout_seconds=settings.source_db.query_timeout_seconds,
            )

        logger.debug("Initializing chain resolvers...")
        if self._provided_resolver is not None:
            self._resolver = self._provided_resolver
        else:
            redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
            self._resolver = build_chain_resolver(
                settings.chains,
                redis=redis,
                cache_ttl_seconds=settings.redis.block_cache_ttl_seconds,
            )

        analysis_sessions = self._analysis_db.session_factory

        if self._source_db is not None:
            logger.debug("Initializing order sync...")
            engine = OrderSyncEngine(
                source_sessions=self._source_db.session_factory,
                analysis_sessions=analysis_sessions,
                source_query_timeout_seconds=settings.source_db.query_timeout_seconds,
            )
            self._sync_service = OrderSyncService(
                engine,
                sync_interval_seconds=settings.sync.interval_seconds,
            )

        self._backfill_job = TimestampBackfillJob(
            analysis_sessions=analysis_sessions,
            resolver=self._resolver,
            concurrency=settings.backfill.concurrency,
        )
        self._query_service = AnalysisQueryService(
            analysis_sessions,
            query_timeout_seconds=settings.analysis_db.query_timeout_seconds,
        )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._sync_service:
            logger.debug("Starting order sync service...")
            await self._sync_service.start()

        if self._backfill_on_startup and self._backfill_job:
            logger.debug("Scheduling startup timestamp backfill...")
            self._backfill_task = asyncio.create_task(self._run_startup_backfill())

    async def run_backfill(self) -> BackfillResult:
        """Run one backfill pass now; passes never overlap.

        Raises:
            RuntimeError: If the pipeline has not been started.
            AnalysisStoreError: If the pending records cannot be loaded.
        """
        if self._backfill_job is None:
            raise RuntimeError("Pipeline is not running")

        async with self._backfill_lock:
            self._stats.backfill_runs += 1
            result = await self._backfill_job.backfill()
            self._stats.last_backfill = result
            self._stats.last_backfill_time = datetime.now(UTC)
            return result

    async def _run_startup_backfill(self) -> None:
        try:
            await self.run_backfill()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.last_error = str(e)
            logger.error("Startup timestamp backfill failed: %s", e)

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._backfill_task:
            self._backfill_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._backfill_task
            self._backfill_task = None

        if self._sync_service:
            logger.debug("Stopping order sync service...")
            await self._sync_service.stop()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._resolver:
            await self._resolver.aclose()
            self._resolver = None

        if self._source_db:
            await self._source_db.dispose_async()
            self._source_db = None

        if self._analysis_db:
            await self._analysis_db.dispose_async()
            self._analysis_db = None

        self._sync_service = None
        self._backfill_job = None
        self._query_service = None
        logger.debug("Resources cleaned up")

    def health(self) -> dict[str, Any]:
        """Liveness snapshot for the health endpoint."""
        payload: dict[str, Any] = {
            "pipeline": self._state.value,
            "started_at": self._stats.started_at.isoformat() if self._stats.started_at else None,
        }
        if self._sync_service:
            sync_stats = self._sync_service.stats
            payload["sync"] = {
                "state": self._sync_service.state.value,
                "successful_syncs": sync_stats.successful_syncs,
                "failed_syncs": sync_stats.failed_syncs,
                "records_inserted": sync_stats.records_inserted,
                "last_sync_time": (
                    sync_stats.last_sync_time.isoformat() if sync_stats.last_sync_time else None
                ),
                "last_error": sync_stats.last_error,
            }
        if self._stats.last_backfill:
            payload["backfill"] = {
                "patched": self._stats.last_backfill.patched,
                "unresolved": self._stats.last_backfill.unresolved,
                "failed": self._stats.last_backfill.failed,
            }
        return payload

    async def run(self) -> None:
        """Start the pipeline and run until cancelled.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
