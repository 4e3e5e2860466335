# bakery_hub/services/production.py
"""
ProductionStateMachine - order item lifecycle on the production floor.

    new -> prepared -> baked -> creamed -> decorated -> packaged -> delivered
                                     (any) -> cancelled

Moves in any direction are accepted; backward ones are logged so they can be
reviewed. Entering ``prepared`` stamps ``started_at`` once, entering
``delivered`` or ``cancelled`` stamps ``completed_at``.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.dates import utcnow
from bakery_hub.db_models import OrderItem, ProductionStatus
from bakery_hub.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PIPELINE = (
    ProductionStatus.new,
    ProductionStatus.prepared,
    ProductionStatus.baked,
    ProductionStatus.creamed,
    ProductionStatus.decorated,
    ProductionStatus.packaged,
    ProductionStatus.delivered,
)
TERMINAL = frozenset({ProductionStatus.delivered, ProductionStatus.cancelled})

NOTE_FIELDS = ("staff_notes", "internal_decoration_notes", "writing_on_cake")


@dataclass
class StatusChange:
    item: OrderItem
    old_status: ProductionStatus
    new_status: ProductionStatus

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


def parse_status(value: Any) -> ProductionStatus:
    try:
        return ProductionStatus(value)
    except ValueError:
        allowed = [s.value for s in ProductionStatus]
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(allowed)}",
            details={"status": value, "allowed": allowed},
        )


def is_backward(old: ProductionStatus, new: ProductionStatus) -> bool:
    if old in TERMINAL and new not in TERMINAL:
        return True
    if old in PIPELINE and new in PIPELINE:
        return PIPELINE.index(new) < PIPELINE.index(old)
    return False


def apply_transition(item: OrderItem, new_status: ProductionStatus, now: Optional[datetime] = None) -> StatusChange:
    """Set the status and lifecycle timestamps on an item; nothing else changes."""
    now = now or utcnow()
    old_status = item.production_status or ProductionStatus.new

    if new_status == ProductionStatus.prepared and item.started_at is None:
        item.started_at = now
    if new_status in TERMINAL and new_status != old_status:
        item.completed_at = now

    if is_backward(old_status, new_status):
        logger.warning(f"Item {item.id} moved backward: {old_status.value} -> {new_status.value}")

    item.production_status = new_status
    return StatusChange(item=item, old_status=old_status, new_status=new_status)


class ProductionStateMachine:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_item(self, item_id: int, lock: bool = False) -> OrderItem:
        stmt = select(OrderItem).where(OrderItem.id == item_id)
        if lock:
            stmt = stmt.with_for_update()
        item = (await self.db.execute(stmt)).scalar_one_or_none()
        if not item:
            raise NotFoundError("Order item not found", details={"item_id": item_id})
        return item

    async def transition(self, item_id: int, status: Any) -> StatusChange:
        """Validate and persist a status change. The caller announces it."""
        new_status = parse_status(status)
        item = await self._get_item(item_id, lock=True)
        change = apply_transition(item, new_status)
        await self.db.commit()
        logger.info(
            f"Item {item_id} ({item.order_number}) status {change.old_status.value} -> {change.new_status.value}"
        )
        return change

    async def update_notes(self, item_id: int, notes: Dict[str, Optional[str]]) -> OrderItem:
        """Update the free-text fields staff edit from the production view."""
        unknown = set(notes) - set(NOTE_FIELDS)
        if unknown:
            raise ValidationError("Unknown note fields", details={"fields": sorted(unknown)})
        if not notes:
            raise ValidationError("No note fields to update")

        item = await self._get_item(item_id)
        for field, value in notes.items():
            setattr(item, field, value)
        await self.db.commit()
        return item

    async def list_items(
        self,
        delivery_date: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[Any] = None,
        include_completed: bool = True,
    ) -> List[OrderItem]:
        """Production board query over the denormalized item columns."""
        stmt = select(OrderItem)
        if delivery_date is not None:
            stmt = stmt.where(OrderItem.delivery_date == delivery_date)
        if date_from is not None:
            stmt = stmt.where(OrderItem.delivery_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(OrderItem.delivery_date <= date_to)
        if status is not None:
            stmt = stmt.where(OrderItem.production_status == parse_status(status))
        elif not include_completed:
            stmt = stmt.where(OrderItem.production_status.notin_(list(TERMINAL)))

        stmt = stmt.order_by(
            OrderItem.delivery_date.asc(),
            OrderItem.delivery_time.asc(),
            OrderItem.order_number.asc(),
            OrderItem.id.asc(),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
