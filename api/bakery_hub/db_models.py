# bakery_hub/db_models.py
"""
SQLAlchemy ORM Models for Bakery Hub.

4 tables: clients, orders, order_items, financial_transactions.
"""
from __future__ import annotations
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, Date, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum, JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from bakery_hub.database import Base, BigIntPK
from bakery_hub.dates import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")

# ============================================================================
# ENUMS
# ============================================================================

class ProductionStatus(str, enum.Enum):
    new = "new"
    prepared = "prepared"
    baked = "baked"
    creamed = "creamed"
    decorated = "decorated"
    packaged = "packaged"
    delivered = "delivered"
    cancelled = "cancelled"


class DeliveryType(str, enum.Enum):
    pickup = "pickup"
    delivery = "delivery"
    immediate = "immediate"


class TransactionType(str, enum.Enum):
    revenue = "revenue"
    expense = "expense"


class SourceType(str, enum.Enum):
    order = "order"
    manual = "manual"


class ExpenseCategory(str, enum.Enum):
    ingredients = "ingredients"
    utilities = "utilities"
    labor = "labor"
    supplies = "supplies"
    marketing = "marketing"
    rent = "rent"
    equipment = "equipment"
    delivery = "delivery"
    other = "other"


class PaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    twint = "twint"
    bank_transfer = "bank_transfer"
    stripe = "stripe"
    other = "other"


class Channel(str, enum.Enum):
    website = "website"
    phone = "phone"
    whatsapp = "whatsapp"
    instagram = "instagram"
    email = "email"
    walk_in = "walk_in"
    other = "other"


class PreferredContact(str, enum.Enum):
    email = "email"
    phone = "phone"
    whatsapp = "whatsapp"
    instagram = "instagram"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================================================
# 1. CLIENTS
# ============================================================================

class Client(TimestampMixin, Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    whatsapp: Mapped[Optional[str]] = mapped_column(String(50))
    instagram_handle: Mapped[Optional[str]] = mapped_column(String(100))
    preferred_contact: Mapped[Optional[PreferredContact]] = mapped_column(
        SQLEnum(PreferredContact, name="preferred_contact")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Derived aggregates, written only by the ledger reconciler
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    first_order_date: Mapped[Optional[date]] = mapped_column(Date)
    last_order_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        Index("idx_clients_email", "email"),
        Index("idx_clients_phone", "phone"),
    )


# ============================================================================
# 2. ORDERS
# ============================================================================

class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(20), unique=True)
    # parsed copy of the number's month/counter segments
    sequence_month: Mapped[Optional[int]] = mapped_column(Integer)
    sequence_counter: Mapped[Optional[int]] = mapped_column(Integer)

    client_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("clients.id", ondelete="SET NULL"))
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))
    customer_ig_handle: Mapped[Optional[str]] = mapped_column(String(100))

    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_time: Mapped[Optional[str]] = mapped_column(String(20))
    delivery_type: Mapped[DeliveryType] = mapped_column(
        SQLEnum(DeliveryType, name="delivery_type"),
        default=DeliveryType.pickup,
        nullable=False
    )
    delivery_address: Mapped[Optional[dict]] = mapped_column(JSONType)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text)
    channel: Mapped[Channel] = mapped_column(
        SQLEnum(Channel, name="order_channel"),
        default=Channel.phone,
        nullable=False
    )

    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method")
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    __table_args__ = (
        UniqueConstraint("sequence_month", "sequence_counter", name="uq_orders_month_counter"),
        CheckConstraint("total_amount >= 0", name="chk_order_total_non_negative"),
        Index("idx_orders_client", "client_id"),
        Index("idx_orders_delivery_date", "delivery_date"),
    )


# ============================================================================
# 3. ORDER ITEMS
# ============================================================================

class OrderItem(TimestampMixin, Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(String(100))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    size_label: Mapped[Optional[str]] = mapped_column(String(100))
    flavour_name: Mapped[Optional[str]] = mapped_column(String(100))
    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 3))
    diameter_cm: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    writing_on_cake: Mapped[Optional[str]] = mapped_column(Text)
    internal_decoration_notes: Mapped[Optional[str]] = mapped_column(Text)
    staff_notes: Mapped[Optional[str]] = mapped_column(Text)

    production_status: Mapped[ProductionStatus] = mapped_column(
        SQLEnum(ProductionStatus, name="production_status"),
        default=ProductionStatus.new,
        nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Denormalized from the parent order for the production view
    order_number: Mapped[Optional[str]] = mapped_column(String(20))
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_type: Mapped[Optional[DeliveryType]] = mapped_column(SQLEnum(DeliveryType, name="delivery_type"))
    delivery_time: Mapped[Optional[str]] = mapped_column(String(20))

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_item_qty_positive"),
        Index("idx_order_items_order", "order_id"),
        Index("idx_order_items_production", "delivery_date", "production_status"),
    )


# ============================================================================
# 4. FINANCIAL TRANSACTIONS
# ============================================================================

class FinancialTransaction(TimestampMixin, Base):
    __tablename__ = "financial_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name="transaction_type"),
        nullable=False
    )
    transaction_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CHF", nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    source_type: Mapped[SourceType] = mapped_column(
        SQLEnum(SourceType, name="transaction_source_type"),
        default=SourceType.manual,
        nullable=False
    )
    source_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    client_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("clients.id", ondelete="SET NULL"))
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method")
    )
    channel: Mapped[Optional[Channel]] = mapped_column(SQLEnum(Channel, name="order_channel"))
    expense_category: Mapped[Optional[ExpenseCategory]] = mapped_column(
        SQLEnum(ExpenseCategory, name="expense_category")
    )
    receipt_url: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        # one revenue record per order
        UniqueConstraint("source_type", "source_id", name="uq_transactions_source"),
        CheckConstraint("amount >= 0", name="chk_transaction_amount_non_negative"),
        CheckConstraint(
            "type != 'expense' OR expense_category IS NOT NULL",
            name="chk_expense_has_category"
        ),
        Index("idx_transactions_date", "date"),
        Index("idx_transactions_type_date", "type", "date"),
    )
