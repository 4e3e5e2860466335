# bakery_hub/routers/production.py
"""
Production Router - item status board and the live event stream.
"""
from __future__ import annotations
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.auth import staff_only
from bakery_hub.database import get_session
from bakery_hub.deps import get_hub, get_order_service
from bakery_hub.errors import ValidationError
from bakery_hub.models import StatusUpdateIn, NotesUpdateIn
from bakery_hub.routers.orders import envelope, item_payload
from bakery_hub.services.broadcast import BroadcastHub
from bakery_hub.services.orders import OrderService
from bakery_hub.services.production import ProductionStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/production", tags=["Production"], dependencies=[Depends(staff_only)])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # disable proxy buffering (nginx)
    "X-Accel-Buffering": "no",
}


@router.patch("/status")
async def update_status(
    payload: StatusUpdateIn,
    svc: OrderService = Depends(get_order_service),
):
    """Move an item to another production status and announce it."""
    outcome = await svc.change_status(payload.item_id, payload.status)
    return envelope(outcome, message="Status updated successfully")


@router.patch("/items/{item_id}/notes")
async def update_notes(
    item_id: int,
    payload: NotesUpdateIn,
    svc: OrderService = Depends(get_order_service),
):
    notes = {name: getattr(payload, name) for name in payload.model_fields_set}
    if not notes:
        raise ValidationError("No note fields to update")
    outcome = await svc.update_notes(item_id, notes)
    return envelope(outcome, message="Notes updated successfully")


@router.get("/items")
async def list_items(
    delivery_date: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[str] = None,
    include_completed: bool = True,
    db: AsyncSession = Depends(get_session),
):
    items = await ProductionStateMachine(db).list_items(
        delivery_date=delivery_date,
        date_from=date_from,
        date_to=date_to,
        status=status,
        include_completed=include_completed,
    )
    return {"success": True, "items": [item_payload(i) for i in items], "count": len(items)}


@router.get("/stream")
async def stream(hub: BroadcastHub = Depends(get_hub)):
    """
    Server-sent events for production devices.

    The first frame is the ``connected`` handshake; the connection stays open
    until the client goes away, which deregisters it.
    """
    # registration happens once the body starts streaming
    return StreamingResponse(
        hub.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
