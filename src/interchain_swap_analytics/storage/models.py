"""SQLAlchemy models for persistent storage.

This module defines the analysis-store schema (``order_analysis``) and the
read-only source-store tables the sync engine selects from.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime that round-trips as UTC on every dialect.

    PostgreSQL stores ``timestamptz`` natively; SQLite drops tzinfo, so values
    are normalized to UTC before binding and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:  # noqa: ARG002
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("datetime values must be timezone-aware")
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:  # noqa: ARG002
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for analysis-store models."""

    pass


class SourceBase(DeclarativeBase):
    """Base class for the read-only source-store tables.

    Kept on separate metadata so analysis-store migrations never touch them.
    """

    pass


class OrderAnalysisModel(Base):
    """One row per completed matched order, enriched with milestone timings."""

    __tablename__ = "order_analysis"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    create_order_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source_swap_id: Mapped[str] = mapped_column(Text, nullable=False)
    destination_swap_id: Mapped[str] = mapped_column(Text, nullable=False)
    source_chain: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_chain: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    user_init: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cobi_init: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    user_redeem: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cobi_redeem: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    user_refund: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cobi_refund: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    secret_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    user_init_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cobi_init_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    user_redeem_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cobi_redeem_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    user_refund_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cobi_refund_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_order_analysis_pair_created", "source_chain", "destination_chain", "created_at"),
        Index("idx_order_analysis_created_at", "created_at"),
    )


class CreateOrderModel(SourceBase):
    """Order request as created by the user (source store)."""

    __tablename__ = "create_orders"

    create_id: Mapped[str] = mapped_column(Text, primary_key=True)
    source_chain: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_chain: Mapped[str] = mapped_column(String(64), nullable=False)
    secret_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class MatchedOrderModel(SourceBase):
    """Pairing of an order with its source and destination swap legs (source store)."""

    __tablename__ = "matched_orders"

    create_order_id: Mapped[str] = mapped_column(Text, primary_key=True)
    source_swap_id: Mapped[str] = mapped_column(Text, primary_key=True)
    destination_swap_id: Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True, default=lambda: datetime.now(UTC)
    )


class SwapModel(SourceBase):
    """One chain-side leg of a matched order (source store)."""

    __tablename__ = "swaps"

    swap_id: Mapped[str] = mapped_column(Text, primary_key=True)
    chain: Mapped[str] = mapped_column(String(64), nullable=False)
    initiate_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    redeem_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    refund_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    redeem_tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
