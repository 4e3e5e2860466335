# bakery_hub/services/sequence.py
"""
Order numbering: ``DD-MM-NN``.

``DD``/``MM`` come from the delivery date, ``NN`` is a counter scoped to the
month segment across all orders (so ``28-01-09`` and ``03-01-10`` share one
sequence). The counter is the numeric maximum plus one; past 99 it simply
widens to three digits.
"""
from __future__ import annotations
import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.db_models import Order
from bakery_hub.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# stages the rows carrying the number; the allocator commits
Writer = Callable[[str, int, int], Awaitable[T]]


def format_order_number(delivery_date: date, counter: int) -> str:
    return f"{delivery_date.day:02d}-{delivery_date.month:02d}-{counter:02d}"


def parse_order_number(number: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """Return (day, month, counter), or None for anything not shaped DD-MM-NN."""
    if not number:
        return None
    parts = number.split("-")
    # isdigit alone admits digits int() rejects, e.g. "²"
    if len(parts) != 3 or not all(p.isascii() and p.isdigit() for p in parts):
        return None
    day, month, counter = (int(p) for p in parts)
    return day, month, counter


class SequenceAllocator:
    """
    Allocate month-scoped order numbers.

    Allocation for one month is serialized in-process by a lock; across
    processes the unique constraints on ``order_number`` and
    ``(sequence_month, sequence_counter)`` reject a duplicate and the insert
    is retried with a fresh read.
    """

    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, month: int) -> asyncio.Lock:
        lock = self._locks.get(month)
        if lock is None:
            lock = self._locks[month] = asyncio.Lock()
        return lock

    async def next_counter(self, db: AsyncSession, month: int) -> int:
        result = await db.execute(
            select(Order.order_number).where(Order.order_number.like(f"__-{month:02d}-%"))
        )
        highest = 0
        for number in result.scalars():
            parsed = parse_order_number(number)
            if parsed is None:
                logger.debug(f"Ignoring malformed order number: {number!r}")
                continue
            if parsed[1] != month:
                continue
            highest = max(highest, parsed[2])
        return highest + 1

    async def peek(self, db: AsyncSession, delivery_date: date) -> str:
        """Next number for the date, without reserving it."""
        counter = await self.next_counter(db, delivery_date.month)
        return format_order_number(delivery_date, counter)

    async def allocate(self, db: AsyncSession, delivery_date: date, write: Writer) -> T:
        """
        Pick the next number for ``delivery_date``, let ``write`` stage the rows
        that carry it, and commit.

        ``write(number, month, counter)`` runs once per attempt; anything it
        staged is rolled back before a retry, so it must rebuild its state each
        time. Returns whatever ``write`` returned on the successful attempt.
        """
        month = delivery_date.month
        async with self._lock_for(month):
            for attempt in range(1, self.max_attempts + 1):
                counter = await self.next_counter(db, month)
                number = format_order_number(delivery_date, counter)
                staged = await write(number, month, counter)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    if not await self._is_taken(db, number, month, counter):
                        raise
                    logger.warning(
                        f"Order number {number} already taken, retrying ({attempt}/{self.max_attempts})"
                    )
                    continue
                logger.info(f"Allocated order number {number}")
                return staged

        raise ConflictError(
            "Could not allocate an order number",
            details={"month": month, "attempts": self.max_attempts},
        )

    async def _is_taken(self, db: AsyncSession, number: str, month: int, counter: int) -> bool:
        by_number = await db.scalar(select(Order.id).where(Order.order_number == number))
        if by_number is not None:
            return True
        by_counter = await db.scalar(
            select(Order.id).where(Order.sequence_month == month, Order.sequence_counter == counter)
        )
        return by_counter is not None

    def renumber_within_month(self, order: Order, new_date: date) -> str:
        """Same month: keep the counter, swap the day segment."""
        counter = order.sequence_counter
        if counter is None:
            parsed = parse_order_number(order.order_number)
            counter = parsed[2] if parsed else None
        if counter is None:
            raise ConflictError(
                "Order has no sequence counter to carry over",
                details={"order_id": order.id, "order_number": order.order_number},
            )
        return format_order_number(new_date, counter)
