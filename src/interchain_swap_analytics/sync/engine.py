"""Incremental order sync from the source store into ``order_analysis``.

One call to ``OrderSyncEngine.sync`` is one cycle:

1. Recompute the watermark (latest ``created_at`` in the analysis store).
2. Read orders created after it whose two legs are both completed.
3. Map each order to an analysis record and insert it if absent, all inside
   a single transaction.

Nothing is cached between cycles, so a rolled-back cycle is retried whole
on the next invocation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interchain_swap_analytics.errors import (
    AnalysisStoreError,
    SourceUnavailableError,
    SyncWriteError,
)
from interchain_swap_analytics.storage.repos import (
    OrderAnalysisDTO,
    OrderAnalysisRepository,
    SourceOrderDTO,
    SourceOrderRepository,
    SwapLegDTO,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_QUERY_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync cycle."""

    watermark: datetime | None
    selected: int
    inserted: int
    skipped: bool = False

    @property
    def already_present(self) -> int:
        return self.selected - self.inserted


@dataclass(frozen=True)
class _LegMilestones:
    redeem_at: datetime | None = None
    redeem_block_number: int | None = None
    refund_at: datetime | None = None
    refund_block_number: int | None = None


def _leg_milestones(leg: SwapLegDTO) -> _LegMilestones:
    # A leg carrying both hashes is attributed to its redeem.
    if leg.is_redeemed:
        return _LegMilestones(redeem_at=leg.updated_at, redeem_block_number=leg.redeem_block_number)
    if leg.is_refunded:
        return _LegMilestones(refund_at=leg.updated_at, refund_block_number=leg.refund_block_number)
    return _LegMilestones()


def map_source_order(order: SourceOrderDTO) -> OrderAnalysisDTO:
    """Map a completed source order to its analysis record.

    Init timestamps stay null until the backfill job resolves them from the
    init block numbers copied here.
    """
    user = _leg_milestones(order.source_leg)
    cobi = _leg_milestones(order.destination_leg)
    return OrderAnalysisDTO(
        create_order_id=order.create_order_id,
        source_swap_id=order.source_leg.swap_id,
        destination_swap_id=order.destination_leg.swap_id,
        source_chain=order.source_chain,
        destination_chain=order.destination_chain,
        created_at=order.created_at,
        user_init=None,
        cobi_init=None,
        user_redeem=user.redeem_at,
        cobi_redeem=cobi.redeem_at,
        user_refund=user.refund_at,
        cobi_refund=cobi.refund_at,
        secret_hash=order.secret_hash,
        user_init_block_number=order.source_leg.initiate_block_number,
        cobi_init_block_number=order.destination_leg.initiate_block_number,
        user_redeem_block_number=user.redeem_block_number,
        cobi_redeem_block_number=cobi.redeem_block_number,
        user_refund_block_number=user.refund_block_number,
        cobi_refund_block_number=cobi.refund_block_number,
    )


class OrderSyncEngine:
    """Copies newly completed orders into the analysis store.

    Example:
        ```python
        engine = OrderSyncEngine(
            source_sessions=source_db.session_factory,
            analysis_sessions=analysis_db.session_factory,
        )
        result = await engine.sync()
        print(result.inserted)
        ```
    """

    def __init__(
        self,
        *,
        source_sessions: async_sessionmaker[AsyncSession],
        analysis_sessions: async_sessionmaker[AsyncSession],
        source_query_timeout_seconds: float = DEFAULT_SOURCE_QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self._source_sessions = source_sessions
        self._analysis_sessions = analysis_sessions
        self._source_timeout = source_query_timeout_seconds

    async def sync(self) -> SyncResult:
        """Run one sync cycle.

        Returns:
            SyncResult with the number of newly inserted records.

        Raises:
            AnalysisStoreError: If the watermark cannot be read.
            SourceUnavailableError: If the source read fails or times out.
            SyncWriteError: If the insert transaction failed and was rolled back.
        """
        watermark = await self._load_watermark()
        orders = await self._read_completed_orders(watermark)
        if not orders:
            logger.info("No completed orders after watermark %s", watermark.isoformat())
            return SyncResult(watermark=watermark, selected=0, inserted=0)

        inserted = await self._insert_orders(orders)
        result = SyncResult(watermark=watermark, selected=len(orders), inserted=inserted)
        logger.info(
            "Sync cycle stored %d new records (%d selected, %d already present) after %s",
            result.inserted,
            result.selected,
            result.already_present,
            watermark.isoformat(),
        )
        return result

    async def _load_watermark(self) -> datetime:
        try:
            async with self._analysis_sessions() as session:
                return await OrderAnalysisRepository(session).get_watermark()
        except Exception as e:
            logger.error("Failed to read sync watermark from analysis store: %s", e)
            raise AnalysisStoreError(f"Failed to read sync watermark: {e}") from e

    async def _read_completed_orders(self, watermark: datetime) -> list[SourceOrderDTO]:
        try:
            async with self._source_sessions() as session:
                orders = await asyncio.wait_for(
                    SourceOrderRepository(session).list_completed_since(watermark),
                    timeout=self._source_timeout,
                )
        except TimeoutError as e:
            logger.error(
                "Source query timed out after %.1fs (watermark=%s)",
                self._source_timeout,
                watermark.isoformat(),
            )
            raise SourceUnavailableError("Source query timed out") from e
        except Exception as e:
            logger.error("Failed to read completed orders from source store: %s", e)
            raise SourceUnavailableError(f"Source read failed: {e}") from e

        logger.info("Retrieved %d completed orders from source store", len(orders))
        return orders

    async def _insert_orders(self, orders: list[SourceOrderDTO]) -> int:
        inserted = 0
        current: str | None = None
        try:
            async with self._analysis_sessions() as session, session.begin():
                repo = OrderAnalysisRepository(session)
                for order in orders:
                    current = order.create_order_id
                    if await repo.insert_if_absent(map_source_order(order)):
                        inserted += 1
        except Exception as e:
            logger.error(
                "Sync transaction rolled back at order %s after %d inserts: %s",
                current,
                inserted,
                e,
            )
            raise SyncWriteError(f"Sync write failed at order {current}: {e}", order_id=current) from e
        return inserted
