# bakery_hub/services/clients.py
"""
Client directory: find-or-create from order contact details, search, delete.

Aggregates (total_orders, total_spent, first/last order date) are never
written here; see LedgerReconciler.recompute_client_stats.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from bakery_hub.db_models import Client, Order, Channel, PreferredContact
from bakery_hub.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2


@dataclass
class ContactInfo:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram_handle: Optional[str] = None
    preferred_contact: Optional[PreferredContact] = None
    notes: Optional[str] = None

    def __post_init__(self):
        for field in ("email", "phone", "whatsapp", "instagram_handle"):
            value = getattr(self, field)
            setattr(self, field, value.strip() if value and value.strip() else None)


def infer_preferred_contact(channel: Optional[Channel], contact: ContactInfo) -> Optional[PreferredContact]:
    if contact.preferred_contact:
        return contact.preferred_contact

    if channel == Channel.instagram:
        return PreferredContact.instagram
    if channel == Channel.email:
        return PreferredContact.email
    if channel == Channel.whatsapp:
        return PreferredContact.whatsapp
    if channel in (Channel.phone, Channel.walk_in):
        return PreferredContact.phone if contact.phone else None

    if contact.email:
        return PreferredContact.email
    if contact.phone:
        return PreferredContact.phone
    if contact.instagram_handle:
        return PreferredContact.instagram
    return None


class ClientService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_contact(self, contact: ContactInfo) -> Optional[Client]:
        """Match by email (case-insensitive), then by phone."""
        if contact.email:
            stmt = (
                select(Client)
                .where(func.lower(Client.email) == contact.email.lower())
                .order_by(Client.id)
                .limit(1)
            )
            client = (await self.db.execute(stmt)).scalar_one_or_none()
            if client:
                return client
        if contact.phone:
            stmt = select(Client).where(Client.phone == contact.phone).order_by(Client.id).limit(1)
            return (await self.db.execute(stmt)).scalar_one_or_none()
        return None

    async def find_or_create(self, contact: ContactInfo, channel: Optional[Channel] = None) -> Tuple[Client, bool]:
        """
        Returns (client, is_new). Missing contact fields on an existing client
        are filled in. Does not commit.
        """
        if not (contact.email or contact.phone or contact.instagram_handle):
            raise ValidationError(
                "At least one contact method (email, phone, or Instagram) is required",
                details={"fields": ["customer_email", "customer_phone", "customer_ig_handle"]},
            )

        client = await self.find_by_contact(contact)
        if client:
            if contact.email and not client.email:
                client.email = contact.email
            if contact.phone and not client.phone:
                client.phone = contact.phone
            if contact.whatsapp and not client.whatsapp:
                client.whatsapp = contact.whatsapp
            if contact.instagram_handle and not client.instagram_handle:
                client.instagram_handle = contact.instagram_handle
            if not client.preferred_contact and channel:
                client.preferred_contact = infer_preferred_contact(channel, contact)
            return client, False

        client = Client(
            name=contact.name,
            email=contact.email,
            phone=contact.phone,
            # WhatsApp usually is the phone number
            whatsapp=contact.whatsapp or contact.phone,
            instagram_handle=contact.instagram_handle,
            preferred_contact=infer_preferred_contact(channel, contact),
            notes=contact.notes,
        )
        self.db.add(client)
        await self.db.flush()
        logger.info(f"Client created: {client.id} ({client.name})")
        return client, True

    async def get(self, client_id: int) -> Client:
        client = await self.db.get(Client, client_id)
        if not client:
            raise NotFoundError("Client not found", details={"client_id": client_id})
        return client

    async def search(self, query: Optional[str], limit: int = 10) -> List[Client]:
        """Name/email/phone search; short queries return the most recent clients."""
        q = (query or "").strip()
        if len(q) < MIN_SEARCH_LENGTH:
            stmt = select(Client).order_by(Client.last_order_date.desc().nullslast(), Client.id.desc()).limit(limit)
            return list((await self.db.execute(stmt)).scalars().all())

        pattern = f"%{q.lower()}%"
        stmt = (
            select(Client)
            .where(or_(
                func.lower(Client.name).like(pattern),
                func.lower(Client.email).like(pattern),
                Client.phone.like(f"%{q}%"),
            ))
            .order_by(Client.total_orders.desc(), Client.name.asc())
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_orders(self, client_id: int, limit: int = 50) -> List[Order]:
        stmt = (
            select(Order)
            .where(Order.client_id == client_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def delete(self, client_id: int) -> None:
        """Only clients without orders can be deleted."""
        client = await self.get(client_id)
        order_count = await self.db.scalar(select(func.count(Order.id)).where(Order.client_id == client_id))
        if order_count:
            raise ConflictError(
                "Cannot delete client with existing orders",
                details={"client_id": client_id, "orders": int(order_count)},
            )
        await self.db.delete(client)
        await self.db.commit()
        logger.info(f"Client {client_id} deleted")
