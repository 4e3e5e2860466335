from __future__ import annotations
import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bakery_hub.dates import parse_local_date
from bakery_hub.db_models import (
    Channel, DeliveryType, PaymentMethod, ProductionStatus,
    TransactionType, SourceType, ExpenseCategory, PreferredContact,
)


def _local_date(v):
    if v is None:
        return v
    return parse_local_date(v)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class DeliveryAddress(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = "CH"


class OrderItemIn(BaseModel):
    product_name: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    subtotal: Optional[Decimal] = Field(default=None, ge=0)
    product_id: Optional[str] = None
    size_label: Optional[str] = None
    flavour_name: Optional[str] = None
    weight_kg: Optional[Decimal] = None
    diameter_cm: Optional[Decimal] = None
    writing_on_cake: Optional[str] = None
    internal_decoration_notes: Optional[str] = None
    staff_notes: Optional[str] = None


class OrderCreateIn(BaseModel):
    customer_name: str = Field(min_length=1)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_ig_handle: Optional[str] = None
    delivery_date: date
    delivery_time: Optional[str] = None
    delivery_type: DeliveryType = DeliveryType.pickup
    delivery_address: Optional[DeliveryAddress] = None
    customer_notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    paid: bool = False
    channel: Channel = Channel.phone
    order_items: List[OrderItemIn] = Field(min_length=1)

    @field_validator("delivery_date", mode="before")
    @classmethod
    def parse_delivery_date(cls, v):
        return _local_date(v)

    @model_validator(mode="after")
    def _check_contact_and_address(self):
        missing = []
        if self.channel in (Channel.phone, Channel.whatsapp, Channel.walk_in) and not self.customer_phone:
            missing.append("customer_phone")
        elif self.channel == Channel.instagram and not self.customer_ig_handle:
            missing.append("customer_ig_handle")
        elif self.channel == Channel.email and not self.customer_email:
            missing.append("customer_email")
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        if self.delivery_type == DeliveryType.delivery and self.delivery_address is None:
            raise ValueError("delivery_address is required for delivery orders")
        if self.delivery_type != DeliveryType.delivery:
            self.delivery_address = None
        return self


class OrderUpdateIn(BaseModel):
    delivery_type: Optional[DeliveryType] = None
    delivery_date: Optional[date] = None
    delivery_time: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    paid: Optional[bool] = None
    payment_method: Optional[PaymentMethod] = None
    customer_notes: Optional[str] = None

    @field_validator("delivery_date", mode="before")
    @classmethod
    def parse_delivery_date(cls, v):
        return _local_date(v)


class OrderItemUpdateIn(BaseModel):
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    subtotal: Optional[Decimal] = Field(default=None, ge=0)
    writing_on_cake: Optional[str] = None
    internal_decoration_notes: Optional[str] = None
    staff_notes: Optional[str] = None
    weight_kg: Optional[Decimal] = None
    diameter_cm: Optional[Decimal] = None


class MarkPaidIn(BaseModel):
    payment_method: Optional[PaymentMethod] = None


class StatusUpdateIn(BaseModel):
    item_id: int
    # validated by the production state machine, not here
    status: str


class NotesUpdateIn(BaseModel):
    staff_notes: Optional[str] = None
    internal_decoration_notes: Optional[str] = None
    writing_on_cake: Optional[str] = None


class ExpenseIn(BaseModel):
    date: dt.date
    category: str
    amount: Decimal
    currency: Optional[str] = None
    description: str = Field(min_length=1)
    notes: Optional[str] = None
    receipt_url: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return _local_date(v)


class ManualRevenueIn(BaseModel):
    date: dt.date
    amount: Decimal
    description: str = Field(min_length=1)
    client_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    channel: Channel = Channel.other
    notes: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return _local_date(v)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: Optional[str] = None
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    size_label: Optional[str] = None
    flavour_name: Optional[str] = None
    weight_kg: Optional[Decimal] = None
    diameter_cm: Optional[Decimal] = None
    writing_on_cake: Optional[str] = None
    internal_decoration_notes: Optional[str] = None
    staff_notes: Optional[str] = None
    production_status: ProductionStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    order_number: Optional[str] = None
    delivery_date: Optional[date] = None
    delivery_type: Optional[DeliveryType] = None
    delivery_time: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: Optional[str] = None
    client_id: Optional[int] = None
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_ig_handle: Optional[str] = None
    delivery_date: date
    delivery_time: Optional[str] = None
    delivery_type: DeliveryType
    delivery_address: Optional[dict] = None
    customer_notes: Optional[str] = None
    channel: Channel
    paid: bool
    payment_method: Optional[PaymentMethod] = None
    total_amount: Decimal
    currency: str
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = Field(default_factory=list)


class ClientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram_handle: Optional[str] = None
    preferred_contact: Optional[PreferredContact] = None
    notes: Optional[str] = None
    total_orders: int
    total_spent: Decimal
    first_order_date: Optional[date] = None
    last_order_date: Optional[date] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    date: dt.date = Field(validation_alias="transaction_date")
    amount: Decimal
    currency: str
    description: str
    source_type: SourceType
    source_id: Optional[int] = None
    client_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    channel: Optional[Channel] = None
    expense_category: Optional[ExpenseCategory] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None
