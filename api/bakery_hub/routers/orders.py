# bakery_hub/routers/orders.py
"""
Orders Router - order lifecycle, items and payment toggles.
"""
from __future__ import annotations
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from bakery_hub.auth import owner_only, staff_only
from bakery_hub.deps import get_order_service
from bakery_hub.models import (
    OrderCreateIn, OrderUpdateIn, OrderItemIn, OrderItemUpdateIn, MarkPaidIn,
    OrderOut, OrderItemOut,
)
from bakery_hub.services.orders import OrderService, Outcome

router = APIRouter(prefix="/orders", tags=["Orders"])


def order_payload(order) -> Dict[str, Any]:
    return OrderOut.model_validate(order).model_dump(mode="json")


def item_payload(item) -> Dict[str, Any]:
    return OrderItemOut.model_validate(item).model_dump(mode="json")


def envelope(outcome: Outcome, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if outcome.order is not None:
        body["order"] = order_payload(outcome.order)
    if outcome.item is not None:
        body["item"] = item_payload(outcome.item)
    if outcome.order_deleted:
        body["order_deleted"] = True
    body["warnings"] = outcome.warnings
    return body


# ============================================================================
# Orders
# ============================================================================

@router.post("", status_code=201, dependencies=[Depends(staff_only)])
async def create_order(
    payload: OrderCreateIn,
    svc: OrderService = Depends(get_order_service),
):
    """Create an order with its items; the order number is allocated here."""
    outcome = await svc.create_order(payload)
    return envelope(outcome, message="Order created successfully")


@router.get("", dependencies=[Depends(staff_only)])
async def list_orders(
    delivery_date: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    paid: Optional[bool] = None,
    client_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    svc: OrderService = Depends(get_order_service),
):
    orders = await svc.list_orders(
        delivery_date=delivery_date,
        date_from=date_from,
        date_to=date_to,
        paid=paid,
        client_id=client_id,
        limit=limit,
        offset=offset,
    )
    return {"success": True, "orders": [order_payload(o) for o in orders], "count": len(orders)}


@router.get("/{order_id}", dependencies=[Depends(staff_only)])
async def get_order(order_id: int, svc: OrderService = Depends(get_order_service)):
    order = await svc.get(order_id)
    return {"success": True, "order": order_payload(order)}


@router.patch("/{order_id}", dependencies=[Depends(owner_only)])
async def update_order(
    order_id: int,
    payload: OrderUpdateIn,
    svc: OrderService = Depends(get_order_service),
):
    """
    Update delivery details, notes or payment state.

    A new delivery date rewrites the order number: same month keeps the
    counter, another month gets a fresh one.
    """
    outcome = await svc.update_order(order_id, payload)
    return envelope(outcome, message="Order updated successfully")


@router.delete("/{order_id}", dependencies=[Depends(owner_only)])
async def delete_order(order_id: int, svc: OrderService = Depends(get_order_service)):
    outcome = await svc.delete_order(order_id)
    return envelope(outcome, message="Order deleted successfully")


# ============================================================================
# Payment
# ============================================================================

@router.post("/{order_id}/mark-paid", dependencies=[Depends(staff_only)])
async def mark_paid(
    order_id: int,
    payload: Optional[MarkPaidIn] = Body(default=None),
    svc: OrderService = Depends(get_order_service),
):
    outcome = await svc.mark_paid(order_id, payload.payment_method if payload else None)
    message = "Order already marked as paid" if outcome.already_done else "Order marked as paid"
    return envelope(outcome, message=message)


@router.post("/{order_id}/mark-unpaid", dependencies=[Depends(staff_only)])
async def mark_unpaid(order_id: int, svc: OrderService = Depends(get_order_service)):
    outcome = await svc.mark_unpaid(order_id)
    message = "Order already unpaid" if outcome.already_done else "Order marked as unpaid"
    return envelope(outcome, message=message)


# ============================================================================
# Items
# ============================================================================

@router.post("/{order_id}/items", status_code=201, dependencies=[Depends(staff_only)])
async def add_item(
    order_id: int,
    payload: OrderItemIn,
    svc: OrderService = Depends(get_order_service),
):
    outcome = await svc.add_item(order_id, payload)
    return envelope(outcome, message="Item added successfully")


@router.patch("/items/{item_id}", dependencies=[Depends(staff_only)])
async def update_item(
    item_id: int,
    payload: OrderItemUpdateIn,
    svc: OrderService = Depends(get_order_service),
):
    outcome = await svc.update_item(item_id, payload)
    return envelope(outcome, message="Order item updated successfully")


@router.delete("/items/{item_id}", dependencies=[Depends(staff_only)])
async def delete_item(item_id: int, svc: OrderService = Depends(get_order_service)):
    """Delete an item. Deleting the last one deletes the whole order."""
    outcome = await svc.delete_item(item_id)
    message = "Last item deleted, order removed" if outcome.order_deleted else "Order item deleted successfully"
    return envelope(outcome, message=message)
