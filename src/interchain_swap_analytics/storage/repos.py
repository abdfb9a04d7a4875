"""Repository pattern implementations for data access.

This module provides data access abstractions for the analysis store
(``order_analysis``) and the read-only source store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import aliased

from interchain_swap_analytics.storage.models import (
    CreateOrderModel,
    MatchedOrderModel,
    OrderAnalysisModel,
    SwapModel,
    UTCDateTime,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EPOCH_START = datetime(1970, 1, 1, tzinfo=UTC)

MILESTONE_COLUMNS = (
    "user_init",
    "cobi_init",
    "user_redeem",
    "cobi_redeem",
    "user_refund",
    "cobi_refund",
)


def _dialect_insert(session: AsyncSession) -> Any:
    """Pick the dialect-specific insert construct that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Conditional insert not supported for dialect {dialect!r}")


@dataclass
class OrderAnalysisDTO:
    """Data transfer object for ``order_analysis`` rows."""

    create_order_id: str
    source_swap_id: str
    destination_swap_id: str
    source_chain: str
    destination_chain: str
    created_at: datetime
    user_init: datetime | None = None
    cobi_init: datetime | None = None
    user_redeem: datetime | None = None
    cobi_redeem: datetime | None = None
    user_refund: datetime | None = None
    cobi_refund: datetime | None = None
    secret_hash: str | None = None
    user_init_block_number: int | None = None
    cobi_init_block_number: int | None = None
    user_redeem_block_number: int | None = None
    cobi_redeem_block_number: int | None = None
    user_refund_block_number: int | None = None
    cobi_refund_block_number: int | None = None
    id: int | None = None

    @classmethod
    def from_model(cls, model: OrderAnalysisModel) -> OrderAnalysisDTO:
        return cls(
            id=model.id,
            create_order_id=model.create_order_id,
            source_swap_id=model.source_swap_id,
            destination_swap_id=model.destination_swap_id,
            source_chain=model.source_chain,
            destination_chain=model.destination_chain,
            created_at=model.created_at,
            user_init=model.user_init,
            cobi_init=model.cobi_init,
            user_redeem=model.user_redeem,
            cobi_redeem=model.cobi_redeem,
            user_refund=model.user_refund,
            cobi_refund=model.cobi_refund,
            secret_hash=model.secret_hash,
            user_init_block_number=model.user_init_block_number,
            cobi_init_block_number=model.cobi_init_block_number,
            user_redeem_block_number=model.user_redeem_block_number,
            cobi_redeem_block_number=model.cobi_redeem_block_number,
            user_refund_block_number=model.user_refund_block_number,
            cobi_refund_block_number=model.cobi_refund_block_number,
        )

    def insert_values(self) -> dict[str, Any]:
        return {
            "create_order_id": self.create_order_id,
            "source_swap_id": self.source_swap_id,
            "destination_swap_id": self.destination_swap_id,
            "source_chain": self.source_chain,
            "destination_chain": self.destination_chain,
            "created_at": self.created_at,
            "user_init": self.user_init,
            "cobi_init": self.cobi_init,
            "user_redeem": self.user_redeem,
            "cobi_redeem": self.cobi_redeem,
            "user_refund": self.user_refund,
            "cobi_refund": self.cobi_refund,
            "secret_hash": self.secret_hash,
            "user_init_block_number": self.user_init_block_number,
            "cobi_init_block_number": self.cobi_init_block_number,
            "user_redeem_block_number": self.user_redeem_block_number,
            "cobi_redeem_block_number": self.cobi_redeem_block_number,
            "user_refund_block_number": self.user_refund_block_number,
            "cobi_refund_block_number": self.cobi_refund_block_number,
        }


@dataclass(frozen=True)
class PendingInitDTO:
    """A record still missing at least one init timestamp."""

    id: int
    create_order_id: str
    source_chain: str
    destination_chain: str
    user_init: datetime | None
    cobi_init: datetime | None
    user_init_block_number: int | None
    cobi_init_block_number: int | None


class OrderAnalysisRepository:
    """Repository for the ``order_analysis`` table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get_watermark(self) -> datetime:
        """Latest ``created_at`` already stored, or the epoch start when empty."""
        result = await self.session.execute(select(func.max(OrderAnalysisModel.created_at)))
        latest = result.scalar_one_or_none()
        return latest if latest is not None else EPOCH_START

    async def get_by_order_id(self, create_order_id: str) -> OrderAnalysisDTO | None:
        result = await self.session.execute(
            select(OrderAnalysisModel).where(OrderAnalysisModel.create_order_id == create_order_id)
        )
        model = result.scalar_one_or_none()
        return OrderAnalysisDTO.from_model(model) if model else None

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(OrderAnalysisModel))
        return int(result.scalar_one())

    async def insert_if_absent(self, dto: OrderAnalysisDTO) -> bool:
        """Insert a record unless its order id already exists.

        Returns:
            True if a row was inserted, False if the order id was present.
        """
        insert = _dialect_insert(self.session)
        stmt = insert(OrderAnalysisModel).values(**dto.insert_values())
        stmt = stmt.on_conflict_do_nothing(index_elements=["create_order_id"])
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0) > 0

    async def list_missing_init(self) -> list[PendingInitDTO]:
        result = await self.session.execute(
            select(
                OrderAnalysisModel.id,
                OrderAnalysisModel.create_order_id,
                OrderAnalysisModel.source_chain,
                OrderAnalysisModel.destination_chain,
                OrderAnalysisModel.user_init,
                OrderAnalysisModel.cobi_init,
                OrderAnalysisModel.user_init_block_number,
                OrderAnalysisModel.cobi_init_block_number,
            )
            .where(
                or_(
                    OrderAnalysisModel.user_init.is_(None),
                    OrderAnalysisModel.cobi_init.is_(None),
                )
            )
            .order_by(OrderAnalysisModel.id)
        )
        return [
            PendingInitDTO(
                id=row.id,
                create_order_id=row.create_order_id,
                source_chain=row.source_chain,
                destination_chain=row.destination_chain,
                user_init=row.user_init,
                cobi_init=row.cobi_init,
                user_init_block_number=row.user_init_block_number,
                cobi_init_block_number=row.cobi_init_block_number,
            )
            for row in result.all()
        ]

    async def patch_init_timestamps(
        self,
        record_id: int,
        *,
        user_init: datetime | None,
        cobi_init: datetime | None,
    ) -> bool:
        """Fill init timestamps without overwriting values already present.

        Each column is written as ``COALESCE(existing, new)`` so the first
        resolved value wins across repeated or concurrent runs.

        Returns:
            True if the row was updated.
        """
        values: dict[str, Any] = {}
        if user_init is not None:
            values["user_init"] = func.coalesce(
                OrderAnalysisModel.user_init, sa.literal(user_init, UTCDateTime())
            )
        if cobi_init is not None:
            values["cobi_init"] = func.coalesce(
                OrderAnalysisModel.cobi_init, sa.literal(cobi_init, UTCDateTime())
            )
        if not values:
            return False

        result = await self.session.execute(
            update(OrderAnalysisModel)
            .where(OrderAnalysisModel.id == record_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0) > 0

    async def list_window(
        self,
        *,
        source_chain: str,
        destination_chain: str,
        start_time: datetime,
        end_time: datetime,
    ) -> list[OrderAnalysisDTO]:
        """Records for a chain pair created within ``[start_time, end_time]``.

        Only records with at least one non-null milestone are returned.
        """
        milestones = [getattr(OrderAnalysisModel, name).is_not(None) for name in MILESTONE_COLUMNS]
        result = await self.session.execute(
            select(OrderAnalysisModel)
            .where(
                (OrderAnalysisModel.source_chain == source_chain)
                & (OrderAnalysisModel.destination_chain == destination_chain)
                & (OrderAnalysisModel.created_at >= start_time)
                & (OrderAnalysisModel.created_at <= end_time)
                & or_(*milestones)
            )
            .order_by(OrderAnalysisModel.created_at, OrderAnalysisModel.id)
        )
        return [OrderAnalysisDTO.from_model(model) for model in result.scalars().all()]


@dataclass(frozen=True)
class SwapLegDTO:
    """One leg of a matched order as read from the source store."""

    swap_id: str
    initiate_block_number: int | None
    redeem_block_number: int | None
    refund_block_number: int | None
    redeem_tx_hash: str | None
    refund_tx_hash: str | None
    updated_at: datetime

    @property
    def is_redeemed(self) -> bool:
        return bool(self.redeem_tx_hash)

    @property
    def is_refunded(self) -> bool:
        return bool(self.refund_tx_hash)

    @property
    def is_completed(self) -> bool:
        return self.is_redeemed or self.is_refunded


@dataclass(frozen=True)
class SourceOrderDTO:
    """A completed matched order with both legs (source store)."""

    create_order_id: str
    source_chain: str
    destination_chain: str
    secret_hash: str | None
    created_at: datetime
    source_leg: SwapLegDTO
    destination_leg: SwapLegDTO


def _completed(leg: Any) -> sa.ColumnElement[bool]:
    return or_(
        (leg.redeem_tx_hash.is_not(None)) & (leg.redeem_tx_hash != ""),
        (leg.refund_tx_hash.is_not(None)) & (leg.refund_tx_hash != ""),
    )


class SourceOrderRepository:
    """Read-only access to completed matched orders in the source store."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_completed_since(self, watermark: datetime) -> list[SourceOrderDTO]:
        """Orders created after ``watermark`` whose two legs are both completed.

        Rows are ordered by creation time and deduplicated by order id, so a
        duplicated leg or pairing row never yields the same order twice.
        """
        src = aliased(SwapModel, name="s1")
        dst = aliased(SwapModel, name="s2")
        stmt = (
            select(
                CreateOrderModel.create_id,
                CreateOrderModel.source_chain,
                CreateOrderModel.destination_chain,
                CreateOrderModel.secret_hash,
                CreateOrderModel.created_at,
                src.swap_id.label("source_swap_id"),
                src.initiate_block_number.label("source_initiate_block_number"),
                src.redeem_block_number.label("source_redeem_block_number"),
                src.refund_block_number.label("source_refund_block_number"),
                src.redeem_tx_hash.label("source_redeem_tx_hash"),
                src.refund_tx_hash.label("source_refund_tx_hash"),
                src.updated_at.label("source_updated_at"),
                dst.swap_id.label("destination_swap_id"),
                dst.initiate_block_number.label("destination_initiate_block_number"),
                dst.redeem_block_number.label("destination_redeem_block_number"),
                dst.refund_block_number.label("destination_refund_block_number"),
                dst.redeem_tx_hash.label("destination_redeem_tx_hash"),
                dst.refund_tx_hash.label("destination_refund_tx_hash"),
                dst.updated_at.label("destination_updated_at"),
            )
            .distinct()
            .join(MatchedOrderModel, CreateOrderModel.create_id == MatchedOrderModel.create_order_id)
            .join(src, MatchedOrderModel.source_swap_id == src.swap_id)
            .join(dst, MatchedOrderModel.destination_swap_id == dst.swap_id)
            .where(CreateOrderModel.created_at > watermark)
            .where(_completed(src))
            .where(_completed(dst))
            .order_by(
                CreateOrderModel.created_at,
                CreateOrderModel.create_id,
                src.swap_id,
                dst.swap_id,
            )
        )
        result = await self.session.execute(stmt)

        orders: list[SourceOrderDTO] = []
        seen: set[str] = set()
        for row in result.all():
            if row.create_id in seen:
                logger.debug("Skipping duplicate joined row for order %s", row.create_id)
                continue
            seen.add(row.create_id)
            orders.append(
                SourceOrderDTO(
                    create_order_id=row.create_id,
                    source_chain=row.source_chain,
                    destination_chain=row.destination_chain,
                    secret_hash=row.secret_hash,
                    created_at=row.created_at,
                    source_leg=SwapLegDTO(
                        swap_id=row.source_swap_id,
                        initiate_block_number=row.source_initiate_block_number,
                        redeem_block_number=row.source_redeem_block_number,
                        refund_block_number=row.source_refund_block_number,
                        redeem_tx_hash=row.source_redeem_tx_hash,
                        refund_tx_hash=row.source_refund_tx_hash,
                        updated_at=row.source_updated_at,
                    ),
                    destination_leg=SwapLegDTO(
                        swap_id=row.destination_swap_id,
                        initiate_block_number=row.destination_initiate_block_number,
                        redeem_block_number=row.destination_redeem_block_number,
                        refund_block_number=row.destination_refund_block_number,
                        redeem_tx_hash=row.destination_redeem_tx_hash,
                        refund_tx_hash=row.destination_refund_tx_hash,
                        updated_at=row.destination_updated_at,
                    ),
                )
            )
        return orders
