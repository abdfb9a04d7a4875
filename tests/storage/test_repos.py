"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from interchain_swap_analytics.storage.repos import (
    EPOCH_START,
    OrderAnalysisDTO,
    OrderAnalysisRepository,
    SourceOrderRepository,
)

IST = timezone(timedelta(hours=5, minutes=30))

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def async_session(analysis_sessions: async_sessionmaker[AsyncSession]) -> AsyncSession:
    """Create an async session on the analysis store."""
    async with analysis_sessions() as session:
        yield session


@pytest.fixture
def sample_record(order_created_at: datetime) -> OrderAnalysisDTO:
    """Create a sample analysis record awaiting init timestamps."""
    return OrderAnalysisDTO(
        create_order_id="order-1",
        source_swap_id="order-1-src",
        destination_swap_id="order-1-dst",
        source_chain="ethereum_sepolia",
        destination_chain="starknet_sepolia",
        created_at=order_created_at,
        user_redeem=order_created_at + timedelta(minutes=5),
        cobi_refund=order_created_at + timedelta(minutes=10),
        user_init_block_number=10,
        cobi_init_block_number=20,
        user_redeem_block_number=100,
        cobi_refund_block_number=200,
    )


# ============================================================================
# OrderAnalysisRepository Tests
# ============================================================================


class TestOrderAnalysisRepository:
    """Tests for OrderAnalysisRepository."""

    @pytest.mark.asyncio
    async def test_watermark_defaults_to_epoch(self, async_session: AsyncSession) -> None:
        repo = OrderAnalysisRepository(async_session)
        assert await repo.get_watermark() == EPOCH_START

    @pytest.mark.asyncio
    async def test_insert_and_get(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        assert await repo.insert_if_absent(sample_record) is True
        await async_session.commit()

        stored = await repo.get_by_order_id("order-1")
        assert stored is not None
        assert stored.id is not None
        assert stored.created_at == sample_record.created_at
        assert stored.created_at.tzinfo is not None
        assert stored.user_redeem == sample_record.user_redeem
        assert stored.user_init is None
        assert stored.cobi_refund_block_number == 200

    @pytest.mark.asyncio
    async def test_insert_if_absent_keeps_existing(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        await repo.insert_if_absent(sample_record)
        await async_session.commit()

        duplicate = OrderAnalysisDTO(
            create_order_id=sample_record.create_order_id,
            source_swap_id="other-src",
            destination_swap_id="other-dst",
            source_chain="base_sepolia",
            destination_chain="arbitrum_sepolia",
            created_at=sample_record.created_at,
        )
        assert await repo.insert_if_absent(duplicate) is False
        await async_session.commit()

        stored = await repo.get_by_order_id(sample_record.create_order_id)
        assert stored is not None
        assert stored.source_swap_id == "order-1-src"
        assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_watermark_is_latest_created_at(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        later = OrderAnalysisDTO(
            create_order_id="order-2",
            source_swap_id="order-2-src",
            destination_swap_id="order-2-dst",
            source_chain="ethereum_sepolia",
            destination_chain="starknet_sepolia",
            created_at=sample_record.created_at + timedelta(hours=1),
        )
        await repo.insert_if_absent(sample_record)
        await repo.insert_if_absent(later)
        await async_session.commit()

        assert await repo.get_watermark() == later.created_at

    @pytest.mark.asyncio
    async def test_list_missing_init(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        complete = OrderAnalysisDTO(
            create_order_id="order-2",
            source_swap_id="order-2-src",
            destination_swap_id="order-2-dst",
            source_chain="ethereum_sepolia",
            destination_chain="starknet_sepolia",
            created_at=sample_record.created_at,
            user_init=sample_record.created_at,
            cobi_init=sample_record.created_at,
        )
        await repo.insert_if_absent(sample_record)
        await repo.insert_if_absent(complete)
        await async_session.commit()

        pending = await repo.list_missing_init()
        assert [p.create_order_id for p in pending] == ["order-1"]
        assert pending[0].user_init_block_number == 10
        assert pending[0].cobi_init_block_number == 20

    @pytest.mark.asyncio
    async def test_patch_init_timestamps_only_fills_nulls(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        await repo.insert_if_absent(sample_record)
        await async_session.commit()
        record_id = (await repo.get_by_order_id("order-1")).id

        first = datetime(2024, 1, 1, 5, 31, tzinfo=IST)
        assert await repo.patch_init_timestamps(record_id, user_init=first, cobi_init=None)
        await async_session.commit()

        second = datetime(2024, 1, 1, 6, 0, tzinfo=IST)
        await repo.patch_init_timestamps(record_id, user_init=second, cobi_init=second)
        await async_session.commit()
        async_session.expire_all()

        stored = await repo.get_by_order_id("order-1")
        assert stored.user_init == first
        assert stored.user_init == datetime(2024, 1, 1, 0, 1, tzinfo=UTC)
        assert stored.cobi_init == second

    @pytest.mark.asyncio
    async def test_patch_with_nothing_resolved_is_noop(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        await repo.insert_if_absent(sample_record)
        await async_session.commit()
        record_id = (await repo.get_by_order_id("order-1")).id

        assert await repo.patch_init_timestamps(record_id, user_init=None, cobi_init=None) is False

    @pytest.mark.asyncio
    async def test_list_window_filters_pair_time_and_milestones(
        self, async_session: AsyncSession, sample_record: OrderAnalysisDTO
    ) -> None:
        repo = OrderAnalysisRepository(async_session)
        base = sample_record.created_at
        other_pair = OrderAnalysisDTO(
            create_order_id="order-2",
            source_swap_id="s",
            destination_swap_id="d",
            source_chain="starknet_sepolia",
            destination_chain="ethereum_sepolia",
            created_at=base,
            user_redeem=base,
        )
        out_of_window = OrderAnalysisDTO(
            create_order_id="order-3",
            source_swap_id="s",
            destination_swap_id="d",
            source_chain="ethereum_sepolia",
            destination_chain="starknet_sepolia",
            created_at=base + timedelta(days=3),
            user_redeem=base + timedelta(days=3),
        )
        no_milestones = OrderAnalysisDTO(
            create_order_id="order-4",
            source_swap_id="s",
            destination_swap_id="d",
            source_chain="ethereum_sepolia",
            destination_chain="starknet_sepolia",
            created_at=base,
        )
        for dto in (sample_record, other_pair, out_of_window, no_milestones):
            await repo.insert_if_absent(dto)
        await async_session.commit()

        rows = await repo.list_window(
            source_chain="ethereum_sepolia",
            destination_chain="starknet_sepolia",
            start_time=base,
            end_time=base + timedelta(days=1),
        )
        assert [r.create_order_id for r in rows] == ["order-1"]


# ============================================================================
# SourceOrderRepository Tests
# ============================================================================


class TestSourceOrderRepository:
    """Tests for SourceOrderRepository."""

    @pytest.mark.asyncio
    async def test_only_orders_with_both_legs_completed(
        self, source_sessions, seed_order, order_created_at: datetime
    ) -> None:
        await seed_order("done", created_at=order_created_at)
        await seed_order(
            "refunded",
            created_at=order_created_at + timedelta(minutes=1),
            source_leg={"redeem_tx_hash": None, "refund_tx_hash": "0xrefund", "refund_block_number": 12},
        )
        await seed_order(
            "pending",
            created_at=order_created_at + timedelta(minutes=2),
            destination_leg={"redeem_tx_hash": None},
        )
        await seed_order(
            "empty-hash",
            created_at=order_created_at + timedelta(minutes=3),
            destination_leg={"redeem_tx_hash": "", "refund_tx_hash": ""},
        )

        async with source_sessions() as session:
            orders = await SourceOrderRepository(session).list_completed_since(EPOCH_START)

        assert [o.create_order_id for o in orders] == ["done", "refunded"]
        assert orders[1].source_leg.is_refunded
        assert not orders[1].source_leg.is_redeemed

    @pytest.mark.asyncio
    async def test_respects_watermark_strictly(
        self, source_sessions, seed_order, order_created_at: datetime
    ) -> None:
        await seed_order("at-watermark", created_at=order_created_at)
        await seed_order("after", created_at=order_created_at + timedelta(seconds=1))

        async with source_sessions() as session:
            orders = await SourceOrderRepository(session).list_completed_since(order_created_at)

        assert [o.create_order_id for o in orders] == ["after"]

    @pytest.mark.asyncio
    async def test_orders_sorted_by_creation_time(
        self, source_sessions, seed_order, order_created_at: datetime
    ) -> None:
        await seed_order("late", created_at=order_created_at + timedelta(hours=2))
        await seed_order("early", created_at=order_created_at)
        await seed_order("middle", created_at=order_created_at + timedelta(hours=1))

        async with source_sessions() as session:
            orders = await SourceOrderRepository(session).list_completed_since(EPOCH_START)

        assert [o.create_order_id for o in orders] == ["early", "middle", "late"]
