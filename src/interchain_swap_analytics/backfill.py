"""Block timestamp backfill for init milestones.

The sync engine leaves ``user_init`` and ``cobi_init`` null and copies the
init block numbers. This job resolves those block numbers through the chain
resolvers and patches each record on its own, so a crash or a failed record
leaves every other record consistent and the job can simply be re-run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interchain_swap_analytics.chain.registry import ChainTimestampResolver
from interchain_swap_analytics.errors import AnalysisStoreError
from interchain_swap_analytics.storage.repos import OrderAnalysisRepository, PendingInitDTO

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_CONCURRENCY = 4


class _Outcome(str, Enum):
    PATCHED = "patched"
    UNRESOLVED = "unresolved"
    FAILED = "failed"


@dataclass(frozen=True)
class BackfillResult:
    """Outcome of one backfill pass."""

    selected: int
    patched: int
    unresolved: int
    failed: int


class TimestampBackfillJob:
    """Fills null init timestamps from block numbers without clobbering.

    Example:
        ```python
        job = TimestampBackfillJob(
            analysis_sessions=analysis_db.session_factory,
            resolver=build_chain_resolver(settings.chains),
        )
        result = await job.backfill()
        print(result.patched)
        ```
    """

    def __init__(
        self,
        *,
        analysis_sessions: async_sessionmaker[AsyncSession],
        resolver: ChainTimestampResolver,
        concurrency: int = DEFAULT_BACKFILL_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._analysis_sessions = analysis_sessions
        self._resolver = resolver
        self._concurrency = concurrency

    async def backfill(self) -> BackfillResult:
        """Run one pass over every record missing an init timestamp.

        Raises:
            AnalysisStoreError: If the pending records cannot be loaded.
        """
        records = await self._load_pending()
        logger.info("Found %d rows with missing user_init or cobi_init timestamps", len(records))
        if not records:
            return BackfillResult(selected=0, patched=0, unresolved=0, failed=0)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def process_one(record: PendingInitDTO) -> _Outcome:
            async with semaphore:
                return await self._process(record)

        outcomes = await asyncio.gather(*(process_one(r) for r in records))
        result = BackfillResult(
            selected=len(records),
            patched=sum(1 for o in outcomes if o is _Outcome.PATCHED),
            unresolved=sum(1 for o in outcomes if o is _Outcome.UNRESOLVED),
            failed=sum(1 for o in outcomes if o is _Outcome.FAILED),
        )
        logger.info(
            "Timestamp backfill completed: %d patched, %d unresolved, %d failed of %d",
            result.patched,
            result.unresolved,
            result.failed,
            result.selected,
        )
        return result

    async def _load_pending(self) -> list[PendingInitDTO]:
        try:
            async with self._analysis_sessions() as session:
                return await OrderAnalysisRepository(session).list_missing_init()
        except Exception as e:
            logger.error("Failed to load records missing init timestamps: %s", e)
            raise AnalysisStoreError(f"Failed to load backfill candidates: {e}") from e

    async def _resolve(self, chain_id: str, block_number: int, *, order_id: str) -> datetime | None:
        try:
            return await self._resolver.resolve_block_time(chain_id, block_number)
        except Exception as e:
            logger.warning(
                "Resolver error for order %s on chain %s block %s: %s",
                order_id,
                chain_id,
                block_number,
                e,
            )
            return None

    async def _process(self, record: PendingInitDTO) -> _Outcome:
        user_init: datetime | None = None
        cobi_init: datetime | None = None

        if record.user_init is None and record.user_init_block_number:
            user_init = await self._resolve(
                record.source_chain,
                record.user_init_block_number,
                order_id=record.create_order_id,
            )
        if record.cobi_init is None and record.cobi_init_block_number:
            cobi_init = await self._resolve(
                record.destination_chain,
                record.cobi_init_block_number,
                order_id=record.create_order_id,
            )

        if user_init is None and cobi_init is None:
            return _Outcome.UNRESOLVED

        try:
            async with self._analysis_sessions() as session, session.begin():
                updated = await OrderAnalysisRepository(session).patch_init_timestamps(
                    record.id,
                    user_init=user_init,
                    cobi_init=cobi_init,
                )
        except Exception as e:
            logger.error("Failed to patch init timestamps for order %s: %s", record.create_order_id, e)
            return _Outcome.FAILED

        if not updated:
            logger.warning("Order %s disappeared before its timestamps were patched", record.create_order_id)
            return _Outcome.UNRESOLVED

        logger.info(
            "Updated timestamps for order %s: user_init=%s, cobi_init=%s",
            record.create_order_id,
            user_init.isoformat() if user_init else None,
            cobi_init.isoformat() if cobi_init else None,
        )
        return _Outcome.PATCHED
