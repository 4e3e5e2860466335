# bakery_hub/routers/clients.py
"""
Clients Router - lookup for order entry and the client directory.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.auth import owner_only, staff_only
from bakery_hub.database import get_session
from bakery_hub.models import ClientOut
from bakery_hub.routers.orders import order_payload
from bakery_hub.services.clients import ClientService

router = APIRouter(prefix="/clients", tags=["Clients"])


@router.get("/search", dependencies=[Depends(staff_only)])
async def search_clients(
    q: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_session),
):
    """Autocomplete by name, email or phone (2+ characters, else recent clients)."""
    clients = await ClientService(db).search(q, limit=limit)
    return {
        "success": True,
        "clients": [ClientOut.model_validate(c).model_dump(mode="json") for c in clients],
    }


@router.get("/{client_id}", dependencies=[Depends(owner_only)])
async def get_client(client_id: int, db: AsyncSession = Depends(get_session)):
    svc = ClientService(db)
    client = await svc.get(client_id)
    orders = await svc.list_orders(client_id)
    return {
        "success": True,
        "client": ClientOut.model_validate(client).model_dump(mode="json"),
        "orders": [order_payload(o) for o in orders],
    }


@router.delete("/{client_id}", dependencies=[Depends(owner_only)])
async def delete_client(client_id: int, db: AsyncSession = Depends(get_session)):
    await ClientService(db).delete(client_id)
    return {"success": True, "message": "Client deleted successfully"}
