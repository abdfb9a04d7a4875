"""Pytest configuration and fixtures."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from interchain_swap_analytics.storage.models import (
    Base,
    CreateOrderModel,
    MatchedOrderModel,
    SourceBase,
    SwapModel,
)

SeedOrder = Callable[..., Awaitable[None]]


@pytest.fixture
def order_created_at() -> datetime:
    """Creation time of the sample order used across tests."""
    return datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)


# Each store gets its own file-backed SQLite database so several sessions can
# share it, the way the sync engine and backfill job open their own sessions.
@pytest.fixture
async def analysis_engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analysis.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def analysis_sessions(analysis_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=analysis_engine, expire_on_commit=False)


@pytest.fixture
async def source_engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'source.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SourceBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def source_sessions(source_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=source_engine, expire_on_commit=False)


@pytest.fixture
def seed_order(source_sessions: async_sessionmaker[AsyncSession]) -> SeedOrder:
    """Insert an order, its two swap legs, and their pairing into the source store.

    Legs are described by keyword dicts merged over a completed-by-redeem default.
    """

    async def _seed(
        order_id: str,
        *,
        created_at: datetime,
        source_chain: str = "ethereum_sepolia",
        destination_chain: str = "starknet_sepolia",
        secret_hash: str | None = "0xsecret",
        source_leg: dict | None = None,
        destination_leg: dict | None = None,
    ) -> None:
        legs = []
        for suffix, chain, overrides in (
            ("src", source_chain, source_leg or {}),
            ("dst", destination_chain, destination_leg or {}),
        ):
            values = {
                "swap_id": f"{order_id}-{suffix}",
                "chain": chain,
                "initiate_block_number": 10,
                "redeem_block_number": 11,
                "refund_block_number": None,
                "redeem_tx_hash": "0xredeem",
                "refund_tx_hash": None,
                "updated_at": created_at,
            }
            values.update(overrides)
            legs.append(SwapModel(**values))

        async with source_sessions() as session:
            session.add(
                CreateOrderModel(
                    create_id=order_id,
                    source_chain=source_chain,
                    destination_chain=destination_chain,
                    secret_hash=secret_hash,
                    created_at=created_at,
                )
            )
            session.add_all(legs)
            session.add(
                MatchedOrderModel(
                    create_order_id=order_id,
                    source_swap_id=legs[0].swap_id,
                    destination_swap_id=legs[1].swap_id,
                    created_at=created_at,
                )
            )
            await session.commit()

    return _seed
