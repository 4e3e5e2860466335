# bakery_hub/deps.py
"""
FastAPI dependencies for the long-lived services created in the app lifespan.
"""
from __future__ import annotations
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.database import get_session
from bakery_hub.services.broadcast import BroadcastHub
from bakery_hub.services.orders import OrderService
from bakery_hub.services.sequence import SequenceAllocator


def get_hub(request: Request) -> BroadcastHub:
    return request.app.state.hub


def get_allocator(request: Request) -> SequenceAllocator:
    return request.app.state.allocator


def get_order_service(
    db: AsyncSession = Depends(get_session),
    allocator: SequenceAllocator = Depends(get_allocator),
    hub: BroadcastHub = Depends(get_hub),
) -> OrderService:
    return OrderService(db, allocator, hub)
