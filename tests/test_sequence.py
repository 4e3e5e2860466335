"""Order numbering: DD-MM-NN with a month-scoped counter."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from bakery_hub.database import build_engine, build_session_factory, create_schema
from bakery_hub.db_models import Order
from bakery_hub.errors import ConflictError
from bakery_hub.services.sequence import (
    SequenceAllocator,
    format_order_number,
    parse_order_number,
)
from conftest import insert_numbered_order

pytestmark = pytest.mark.anyio


def _writer(db, delivery: date):
    async def write(number, month, counter):
        order = Order(
            order_number=number,
            sequence_month=month,
            sequence_counter=counter,
            customer_name="Test",
            delivery_date=delivery,
            total_amount=Decimal("0"),
        )
        db.add(order)
        return order

    return write


class TestFormatting:
    def test_zero_padded_segments(self):
        assert format_order_number(date(2026, 1, 3), 7) == "03-01-07"

    def test_counter_widens_past_99(self):
        assert format_order_number(date(2026, 1, 3), 100) == "03-01-100"

    @pytest.mark.parametrize(
        "raw",
        [None, "", "28-01", "28-01-05-2", "ab-01-03", "28-01-x5", "28/01/05", "05-01-0²"],
    )
    def test_malformed_numbers_do_not_parse(self, raw):
        assert parse_order_number(raw) is None

    def test_parse(self):
        assert parse_order_number("28-01-10") == (28, 1, 10)


class TestNextCounter:
    async def test_first_order_of_month(self, db_session, allocator):
        assert await allocator.peek(db_session, date(2026, 1, 28)) == "28-01-01"

    async def test_nine_to_ten_is_numeric(self, db_session, allocator):
        for n in range(1, 10):
            await insert_numbered_order(db_session, f"{n:02d}-01-{n:02d}")

        assert await allocator.peek(db_session, date(2026, 1, 3)) == "03-01-10"

    async def test_ten_beats_nine(self, db_session, allocator):
        # string ordering would rank "09" above "10"
        await insert_numbered_order(db_session, "05-01-09")
        await insert_numbered_order(db_session, "06-01-10")

        assert await allocator.next_counter(db_session, 1) == 11

    async def test_counter_spans_days_within_month(self, db_session, allocator):
        await insert_numbered_order(db_session, "28-01-04")

        assert await allocator.peek(db_session, date(2026, 1, 2)) == "02-01-05"

    async def test_other_months_do_not_count(self, db_session, allocator):
        await insert_numbered_order(db_session, "10-02-30", delivery=date(2026, 2, 10))
        await insert_numbered_order(db_session, "10-12-07", delivery=date(2025, 12, 10))

        assert await allocator.peek(db_session, date(2026, 1, 28)) == "28-01-01"

    async def test_malformed_numbers_are_ignored(self, db_session, allocator):
        await insert_numbered_order(db_session, "ab-01-99")
        await insert_numbered_order(db_session, "01-01-7x")
        await insert_numbered_order(db_session, "05-01-0²")
        await insert_numbered_order(db_session, "02-01-03")

        assert await allocator.next_counter(db_session, 1) == 4

    async def test_widens_after_99(self, db_session, allocator):
        await insert_numbered_order(db_session, "15-01-99")

        assert await allocator.peek(db_session, date(2026, 1, 16)) == "16-01-100"


class StaleAllocator(SequenceAllocator):
    """Reads a stale counter on the first ``stale_reads`` calls."""

    def __init__(self, stale_reads: int, **kwargs):
        super().__init__(**kwargs)
        self.stale_reads = stale_reads
        self.reads = 0

    async def next_counter(self, db, month):
        self.reads += 1
        if self.reads <= self.stale_reads:
            return 1
        return await super().next_counter(db, month)


class TestAllocate:
    async def test_allocate_commits_number_and_sequence_fields(self, db_session, allocator):
        delivery = date(2026, 1, 28)
        order = await allocator.allocate(db_session, delivery, _writer(db_session, delivery))

        assert order.id is not None
        assert order.order_number == "28-01-01"
        assert (order.sequence_month, order.sequence_counter) == (1, 1)

    async def test_sequential_allocations_increase(self, db_session, allocator):
        numbers = []
        for day in (28, 3, 15):
            delivery = date(2026, 1, day)
            order = await allocator.allocate(db_session, delivery, _writer(db_session, delivery))
            numbers.append(order.order_number)

        assert numbers == ["28-01-01", "03-01-02", "15-01-03"]

    async def test_collision_is_retried_with_fresh_read(self, db_session):
        delivery = date(2026, 1, 28)
        first = SequenceAllocator()
        await first.allocate(db_session, delivery, _writer(db_session, delivery))

        # simulates another process that read the counter before the insert above
        racer = StaleAllocator(stale_reads=1)
        order = await racer.allocate(db_session, delivery, _writer(db_session, delivery))

        assert order.order_number == "28-01-02"
        assert racer.reads == 2

    async def test_exhausted_retries_raise_conflict(self, db_session):
        delivery = date(2026, 1, 28)
        await SequenceAllocator().allocate(db_session, delivery, _writer(db_session, delivery))

        racer = StaleAllocator(stale_reads=10, max_attempts=3)
        with pytest.raises(ConflictError):
            await racer.allocate(db_session, delivery, _writer(db_session, delivery))
        assert racer.reads == 3

    async def test_renumber_within_month_keeps_counter(self, db_session, allocator):
        delivery = date(2026, 1, 28)
        order = await allocator.allocate(db_session, delivery, _writer(db_session, delivery))

        assert allocator.renumber_within_month(order, date(2026, 1, 5)) == "05-01-01"


class TestFileDatabase:
    def test_only_memory_databases_share_one_connection(self):
        memory = build_engine("sqlite+aiosqlite:///:memory:")
        on_disk = build_engine("sqlite+aiosqlite:///orders.db")

        assert isinstance(memory.sync_engine.pool, StaticPool)
        assert not isinstance(on_disk.sync_engine.pool, StaticPool)

    async def test_concurrent_allocations_get_unique_counters(self, tmp_path):
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
        await create_schema(engine)
        factory = build_session_factory(engine)
        allocator = SequenceAllocator()
        delivery = date(2026, 1, 28)

        async def place_order():
            async with factory() as db:
                order = await allocator.allocate(db, delivery, _writer(db, delivery))
                return order.order_number

        try:
            numbers = await asyncio.wait_for(asyncio.gather(*(place_order() for _ in range(12))), timeout=30)
        finally:
            await engine.dispose()

        assert sorted(numbers) == [f"28-01-{n:02d}" for n in range(1, 13)]
