# bakery_hub/services/orders.py
"""
Order and item workflows.

Each operation commits its primary write first (order, items, total, status)
and then runs the follow-ups as secondary effects: ledger reconciliation,
client statistics and the production broadcast. A failed follow-up shows up
in ``Outcome.warnings`` and leaves the primary write in place.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bakery_hub.db_models import Order, OrderItem, DeliveryType, PaymentMethod
from bakery_hub.errors import NotFoundError, ValidationError
from bakery_hub.models import OrderCreateIn, OrderUpdateIn, OrderItemIn, OrderItemUpdateIn
from bakery_hub.settings import settings
from bakery_hub.services.broadcast import BroadcastHub
from bakery_hub.services.clients import ClientService, ContactInfo
from bakery_hub.services.effects import SecondaryEffects
from bakery_hub.services.events import (
    NewOrderEvent, StatusUpdateEvent, NotesUpdateEvent, ItemAddedEvent, ItemDeletedEvent,
)
from bakery_hub.services.ledger import LedgerReconciler, money
from bakery_hub.services.production import ProductionStateMachine, NOTE_FIELDS
from bakery_hub.services.sequence import SequenceAllocator

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    order: Optional[Order] = None
    item: Optional[OrderItem] = None
    order_deleted: bool = False
    already_done: bool = False
    warnings: List[Dict[str, str]] = field(default_factory=list)


def item_subtotal(quantity: Any, unit_price: Any, override: Any = None) -> Decimal:
    if override is not None:
        return money(override)
    return money(Decimal(str(quantity)) * Decimal(str(unit_price)))


def sync_item_denorm(order: Order, item: OrderItem) -> None:
    item.order_number = order.order_number
    item.delivery_date = order.delivery_date
    item.delivery_type = order.delivery_type
    item.delivery_time = order.delivery_time


def build_item(spec: OrderItemIn, subtotal: Decimal, **denorm) -> OrderItem:
    return OrderItem(
        product_id=spec.product_id,
        product_name=spec.product_name.strip(),
        quantity=spec.quantity,
        unit_price=money(spec.unit_price),
        subtotal=subtotal,
        size_label=spec.size_label,
        flavour_name=spec.flavour_name,
        weight_kg=spec.weight_kg,
        diameter_cm=spec.diameter_cm,
        writing_on_cake=spec.writing_on_cake,
        internal_decoration_notes=spec.internal_decoration_notes,
        staff_notes=spec.staff_notes,
        **denorm,
    )


class OrderService:
    def __init__(self, db: AsyncSession, allocator: SequenceAllocator, hub: Optional[BroadcastHub] = None):
        self.db = db
        self.allocator = allocator
        self.hub = hub
        self.ledger = LedgerReconciler(db)

    # =========================================================================
    # Loading
    # =========================================================================

    async def get(self, order_id: int) -> Order:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    async def _lock_order(self, order_id: int) -> Order:
        """Load the order row FOR UPDATE; serializes item mutations per order."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    async def get_item(self, item_id: int) -> OrderItem:
        stmt = (
            select(OrderItem)
            .where(OrderItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = (await self.db.execute(stmt)).scalar_one_or_none()
        if not item:
            raise NotFoundError("Order item not found", details={"item_id": item_id})
        return item

    async def list_orders(
        self,
        delivery_date: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        paid: Optional[bool] = None,
        client_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Order]:
        stmt = select(Order).options(selectinload(Order.items))
        if delivery_date is not None:
            stmt = stmt.where(Order.delivery_date == delivery_date)
        if date_from is not None:
            stmt = stmt.where(Order.delivery_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Order.delivery_date <= date_to)
        if paid is not None:
            stmt = stmt.where(Order.paid == paid)
        if client_id is not None:
            stmt = stmt.where(Order.client_id == client_id)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        return list((await self.db.execute(stmt)).scalars().all())

    async def _broadcast(self, event) -> Optional[int]:
        if self.hub is None:
            return None
        return await self.hub.broadcast(event)

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(self, data: OrderCreateIn) -> Outcome:
        contact = ContactInfo(
            name=data.customer_name.strip(),
            email=data.customer_email,
            phone=data.customer_phone,
            instagram_handle=data.customer_ig_handle,
        )
        client_id: Optional[int] = None
        if contact.email or contact.phone or contact.instagram_handle:
            client, _ = await ClientService(self.db).find_or_create(contact, data.channel)
            await self.db.commit()
            client_id = client.id

        lines = [(spec, item_subtotal(spec.quantity, spec.unit_price, spec.subtotal)) for spec in data.order_items]
        total = money(sum((subtotal for _, subtotal in lines), Decimal("0")))
        address = data.delivery_address.model_dump() if data.delivery_address else None

        async def write(number: str, month: int, counter: int) -> Order:
            items = [
                build_item(
                    spec, subtotal,
                    order_number=number,
                    delivery_date=data.delivery_date,
                    delivery_type=data.delivery_type,
                    delivery_time=data.delivery_time,
                )
                for spec, subtotal in lines
            ]
            order = Order(
                order_number=number,
                sequence_month=month,
                sequence_counter=counter,
                client_id=client_id,
                customer_name=contact.name,
                customer_email=contact.email,
                customer_phone=contact.phone,
                customer_ig_handle=contact.instagram_handle,
                delivery_date=data.delivery_date,
                delivery_time=data.delivery_time,
                delivery_type=data.delivery_type,
                delivery_address=address,
                customer_notes=data.customer_notes,
                channel=data.channel,
                paid=data.paid,
                payment_method=data.payment_method,
                total_amount=total,
                currency=settings.DEFAULT_CURRENCY,
                items=items,
            )
            self.db.add(order)
            return order

        order = await self.allocator.allocate(self.db, data.delivery_date, write)
        order_id = order.id
        logger.info(f"Order {order.order_number} created (id={order_id}, items={len(lines)}, total={total})")

        event = NewOrderEvent(
            order_id=order_id,
            order_number=order.order_number,
            delivery_date=order.delivery_date,
            item_count=len(lines),
        )
        fx = SecondaryEffects(self.db)
        if data.paid:
            await fx.run("ledger", self.ledger.mark_paid, order)
        if client_id is not None:
            await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
        await fx.run("broadcast", self._broadcast, event)

        return Outcome(order=await self.get(order_id), warnings=fx.as_payload())

    async def update_order(self, order_id: int, data: OrderUpdateIn) -> Outcome:
        changes: Dict[str, Any] = {name: getattr(data, name) for name in data.model_fields_set}
        for required in ("delivery_date", "delivery_type", "paid"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be null", details={"field": required})
        if "delivery_address" in changes and changes["delivery_address"] is not None:
            changes["delivery_address"] = changes["delivery_address"].model_dump()

        current = await self.get(order_id)
        old_paid = current.paid
        current_month = current.sequence_month or current.delivery_date.month

        new_type = changes.get("delivery_type", current.delivery_type)
        new_address = changes["delivery_address"] if "delivery_address" in changes else current.delivery_address
        if new_type == DeliveryType.delivery and not new_address:
            raise ValidationError(
                "delivery_address is required for delivery orders",
                details={"field": "delivery_address"},
            )

        def apply(target: Order) -> None:
            for name in ("delivery_type", "delivery_time", "customer_notes", "paid", "payment_method", "delivery_address"):
                if name in changes:
                    setattr(target, name, changes[name])
            if target.delivery_type != DeliveryType.delivery:
                target.delivery_address = None
            if "delivery_date" in changes:
                target.delivery_date = changes["delivery_date"]
            for item in target.items:
                sync_item_denorm(target, item)

        new_date: Optional[date] = changes.get("delivery_date")
        if new_date is not None and new_date.month != current_month:
            async def write(number: str, month: int, counter: int) -> Order:
                target = await self._lock_order(order_id)
                target.order_number = number
                target.sequence_month = month
                target.sequence_counter = counter
                apply(target)
                return target

            old_number = current.order_number
            order = await self.allocator.allocate(self.db, new_date, write)
            logger.info(f"Order {order_id} moved to another month: {old_number} -> {order.order_number}")
        else:
            order = await self._lock_order(order_id)
            if new_date is not None and new_date != order.delivery_date and order.order_number:
                order.order_number = self.allocator.renumber_within_month(order, new_date)
            apply(order)
            await self.db.commit()

        client_id = order.client_id
        fx = SecondaryEffects(self.db)
        if order.paid != old_paid:
            if order.paid:
                await fx.run("ledger", self.ledger.mark_paid, order)
            else:
                await fx.run("ledger", self.ledger.mark_unpaid, order_id)
        await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)

        return Outcome(order=await self.get(order_id), warnings=fx.as_payload())

    async def delete_order(self, order_id: int) -> Outcome:
        order = await self._lock_order(order_id)
        client_id = order.client_id
        events = [
            ItemDeletedEvent(order_id=order_id, order_number=order.order_number, item_id=item.id)
            for item in order.items
        ]
        # the order's revenue row goes in the same transaction
        await self.ledger.remove_order_revenue(order_id)
        await self.db.delete(order)
        await self.db.commit()
        logger.info(f"Order {order_id} deleted with {len(events)} item(s)")

        fx = SecondaryEffects(self.db)
        await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
        for event in events:
            await fx.run("broadcast", self._broadcast, event)
        return Outcome(order_deleted=True, warnings=fx.as_payload())

    # =========================================================================
    # Payment
    # =========================================================================

    async def mark_paid(self, order_id: int, payment_method: Optional[PaymentMethod] = None) -> Outcome:
        order = await self._lock_order(order_id)
        already = order.paid
        if not already:
            order.paid = True
            if payment_method is not None:
                order.payment_method = payment_method
        await self.db.commit()
        client_id = order.client_id

        fx = SecondaryEffects(self.db)
        # also repairs a paid order whose revenue row is missing
        await fx.run("ledger", self.ledger.mark_paid, order)
        await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
        return Outcome(order=await self.get(order_id), already_done=already, warnings=fx.as_payload())

    async def mark_unpaid(self, order_id: int) -> Outcome:
        order = await self._lock_order(order_id)
        already = not order.paid
        order.paid = False
        await self.db.commit()
        client_id = order.client_id

        fx = SecondaryEffects(self.db)
        await fx.run("ledger", self.ledger.mark_unpaid, order_id)
        await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
        return Outcome(order=await self.get(order_id), already_done=already, warnings=fx.as_payload())

    # =========================================================================
    # Items
    # =========================================================================

    async def _after_item_change(self, order: Order, event=None) -> SecondaryEffects:
        paid = order.paid
        client_id = order.client_id
        fx = SecondaryEffects(self.db)
        if paid:
            await fx.run("ledger", self.ledger.sync_revenue_amount, order)
        await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
        if event is not None:
            await fx.run("broadcast", self._broadcast, event)
        return fx

    async def add_item(self, order_id: int, data: OrderItemIn) -> Outcome:
        order = await self._lock_order(order_id)
        item = build_item(
            data,
            item_subtotal(data.quantity, data.unit_price, data.subtotal),
            order_number=order.order_number,
            delivery_date=order.delivery_date,
            delivery_type=order.delivery_type,
            delivery_time=order.delivery_time,
        )
        order.items.append(item)
        total = await self.ledger.recompute_order_total(order)
        await self.db.commit()
        item_id = item.id
        logger.info(f"Item {item_id} added to order {order.order_number}, total now {total}")

        event = ItemAddedEvent(
            order_id=order_id,
            order_number=order.order_number,
            item_id=item_id,
            product_name=item.product_name,
            delivery_date=order.delivery_date,
        )
        fx = await self._after_item_change(order, event)
        return Outcome(order=await self.get(order_id), item=await self.get_item(item_id), warnings=fx.as_payload())

    async def update_item(self, item_id: int, data: OrderItemUpdateIn) -> Outcome:
        found = await self.get_item(item_id)
        order_id = found.order_id
        order = await self._lock_order(order_id)
        item = next(i for i in order.items if i.id == item_id)

        item.quantity = data.quantity
        item.unit_price = money(data.unit_price)
        item.subtotal = item_subtotal(data.quantity, data.unit_price, data.subtotal)
        touched_notes = False
        for name in ("writing_on_cake", "internal_decoration_notes", "staff_notes", "weight_kg", "diameter_cm"):
            if name in data.model_fields_set:
                setattr(item, name, getattr(data, name))
                touched_notes = touched_notes or name in NOTE_FIELDS

        total = await self.ledger.recompute_order_total(order)
        await self.db.commit()
        logger.info(f"Item {item_id} updated, order {order.order_number} total now {total}")

        event = None
        if touched_notes:
            event = NotesUpdateEvent(order_id=order_id, order_number=order.order_number, item_id=item_id)
        fx = await self._after_item_change(order, event)
        return Outcome(order=await self.get(order_id), item=await self.get_item(item_id), warnings=fx.as_payload())

    async def delete_item(self, item_id: int) -> Outcome:
        """Remove an item; removing the last one removes the whole order."""
        found = await self.get_item(item_id)
        order_id = found.order_id
        order = await self._lock_order(order_id)
        item = next(i for i in order.items if i.id == item_id)
        event = ItemDeletedEvent(order_id=order_id, order_number=order.order_number, item_id=item_id)

        if len(order.items) == 1:
            client_id = order.client_id
            await self.ledger.remove_order_revenue(order_id)
            await self.db.delete(order)
            await self.db.commit()
            logger.info(f"Last item {item_id} deleted, order {order_id} removed")

            fx = SecondaryEffects(self.db)
            await fx.run("client_stats", self.ledger.recompute_client_stats, client_id)
            await fx.run("broadcast", self._broadcast, event)
            return Outcome(order_deleted=True, warnings=fx.as_payload())

        order.items.remove(item)
        total = await self.ledger.recompute_order_total(order)
        await self.db.commit()
        logger.info(f"Item {item_id} deleted, order {order.order_number} total now {total}")

        fx = await self._after_item_change(order, event)
        return Outcome(order=await self.get(order_id), warnings=fx.as_payload())

    # =========================================================================
    # Production
    # =========================================================================

    async def change_status(self, item_id: int, status: Any) -> Outcome:
        change = await ProductionStateMachine(self.db).transition(item_id, status)
        item = change.item
        event = StatusUpdateEvent(
            order_id=item.order_id,
            order_number=item.order_number,
            item_id=item_id,
            old_status=change.old_status.value,
            new_status=change.new_status.value,
            delivery_date=item.delivery_date,
        )
        fx = SecondaryEffects(self.db)
        await fx.run("broadcast", self._broadcast, event)
        return Outcome(item=await self.get_item(item_id), already_done=not change.changed, warnings=fx.as_payload())

    async def update_notes(self, item_id: int, notes: Dict[str, Optional[str]]) -> Outcome:
        item = await ProductionStateMachine(self.db).update_notes(item_id, notes)
        event = NotesUpdateEvent(order_id=item.order_id, order_number=item.order_number, item_id=item_id)
        fx = SecondaryEffects(self.db)
        await fx.run("broadcast", self._broadcast, event)
        return Outcome(item=await self.get_item(item_id), warnings=fx.as_payload())
