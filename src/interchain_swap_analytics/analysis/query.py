"""Duration statistics over the analysis store.

Reads only ``order_analysis``; the source store is never touched on the
query path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interchain_swap_analytics.errors import AnalysisStoreError
from interchain_swap_analytics.storage.repos import OrderAnalysisDTO, OrderAnalysisRepository

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_SECONDS = 30.0

NO_MATCHING_ORDERS = "no_matching_orders"
NO_DURATIONS = "no_durations"

# Duration name -> (start milestone, end milestone). The overall duration is
# computed separately from the latest terminal milestone present.
DURATION_PAIRS: dict[str, tuple[str, str]] = {
    "user_init": ("created_at", "user_init"),
    "cobi_init": ("user_init", "cobi_init"),
    "user_redeem": ("created_at", "user_redeem"),
    "cobi_redeem": ("user_redeem", "cobi_redeem"),
    "user_refund": ("created_at", "user_refund"),
    "cobi_refund": ("created_at", "cobi_refund"),
}

TERMINAL_MILESTONES = ("user_redeem", "cobi_redeem", "user_refund", "cobi_refund")


@dataclass(frozen=True)
class AnalysisSummary:
    """Average stage durations (seconds) for one chain pair and window."""

    source_chain: str
    destination_chain: str
    start_time: datetime
    end_time: datetime
    total_orders: int
    avg_user_init_duration: float | None
    avg_cobi_init_duration: float | None
    avg_user_redeem_duration: float | None
    avg_cobi_redeem_duration: float | None
    avg_user_refund_duration: float | None
    avg_cobi_refund_duration: float | None
    avg_overall_duration: float | None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat()
        return data


@dataclass(frozen=True)
class NoAnalysisData:
    """Empty outcome: nothing in the window to average."""

    reason: str
    total_orders: int = 0


def clamped_seconds(start: datetime | None, end: datetime | None) -> float | None:
    """Elapsed seconds from ``start`` to ``end``, never negative; None if either is missing."""
    if start is None or end is None:
        return None
    return max((end - start).total_seconds(), 0.0)


def null_aware_average(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def record_durations(record: OrderAnalysisDTO) -> dict[str, float | None]:
    """Per-stage durations for one record, plus ``overall``."""
    durations = {
        name: clamped_seconds(getattr(record, start), getattr(record, end))
        for name, (start, end) in DURATION_PAIRS.items()
    }
    terminals = [t for t in (getattr(record, name) for name in TERMINAL_MILESTONES) if t is not None]
    durations["overall"] = clamped_seconds(record.created_at, max(terminals)) if terminals else None
    return durations


def summarize(
    records: Sequence[OrderAnalysisDTO],
    *,
    source_chain: str,
    destination_chain: str,
    start_time: datetime,
    end_time: datetime,
) -> AnalysisSummary | NoAnalysisData:
    if not records:
        return NoAnalysisData(reason=NO_MATCHING_ORDERS)

    per_record = [record_durations(r) for r in records]
    averages = {
        name: null_aware_average(d[name] for d in per_record)
        for name in (*DURATION_PAIRS, "overall")
    }
    if all(v is None for v in averages.values()):
        return NoAnalysisData(reason=NO_DURATIONS, total_orders=len(records))

    return AnalysisSummary(
        source_chain=source_chain,
        destination_chain=destination_chain,
        start_time=start_time,
        end_time=end_time,
        total_orders=len(records),
        avg_user_init_duration=averages["user_init"],
        avg_cobi_init_duration=averages["cobi_init"],
        avg_user_redeem_duration=averages["user_redeem"],
        avg_cobi_redeem_duration=averages["cobi_redeem"],
        avg_user_refund_duration=averages["user_refund"],
        avg_cobi_refund_duration=averages["cobi_refund"],
        avg_overall_duration=averages["overall"],
    )


class AnalysisQueryService:
    """Computes average stage durations for a chain pair over a time window.

    Example:
        ```python
        service = AnalysisQueryService(analysis_db.session_factory)
        outcome = await service.compute_averages(
            "ethereum_sepolia", "starknet_sepolia", start, end
        )
        if isinstance(outcome, AnalysisSummary):
            print(outcome.avg_overall_duration)
        ```
    """

    def __init__(
        self,
        analysis_sessions: async_sessionmaker[AsyncSession],
        *,
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self._analysis_sessions = analysis_sessions
        self._query_timeout = query_timeout_seconds

    async def compute_averages(
        self,
        source_chain: str,
        destination_chain: str,
        start_time: datetime,
        end_time: datetime,
    ) -> AnalysisSummary | NoAnalysisData:
        """Average durations for orders created within ``[start_time, end_time]``.

        Raises:
            ValueError: If a bound is timezone-naive or the window is inverted.
            AnalysisStoreError: If the analysis store query fails.
        """
        if start_time.tzinfo is None or end_time.tzinfo is None:
            raise ValueError("start_time and end_time must be timezone-aware")
        if end_time < start_time:
            raise ValueError("end_time must not be before start_time")

        try:
            async with self._analysis_sessions() as session:
                records = await asyncio.wait_for(
                    OrderAnalysisRepository(session).list_window(
                        source_chain=source_chain,
                        destination_chain=destination_chain,
                        start_time=start_time,
                        end_time=end_time,
                    ),
                    timeout=self._query_timeout,
                )
        except Exception as e:
            logger.error(
                "Analysis query failed for %s -> %s [%s, %s]: %s",
                source_chain,
                destination_chain,
                start_time.isoformat(),
                end_time.isoformat(),
                e,
            )
            raise AnalysisStoreError(f"Analysis query failed: {e}") from e

        outcome = summarize(
            records,
            source_chain=source_chain,
            destination_chain=destination_chain,
            start_time=start_time,
            end_time=end_time,
        )
        if isinstance(outcome, NoAnalysisData):
            logger.info(
                "No analysis data for %s -> %s (%s)",
                source_chain,
                destination_chain,
                outcome.reason,
            )
        return outcome
