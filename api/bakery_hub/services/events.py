# bakery_hub/services/events.py
"""
Production events pushed to staff devices over the event stream.

Every event carries the order/item ids, the human order number and a
``timestamp`` that the hub stamps at broadcast time. Field names go over the
wire in camelCase.
"""
from __future__ import annotations
from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    order_id: int
    order_number: Optional[str] = None
    timestamp: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class NewOrderEvent(_Event):
    type: Literal["new_order"] = "new_order"
    delivery_date: date
    item_count: int


class StatusUpdateEvent(_Event):
    type: Literal["status_update"] = "status_update"
    item_id: int
    old_status: str
    new_status: str
    delivery_date: Optional[date] = None


class NotesUpdateEvent(_Event):
    type: Literal["notes_update"] = "notes_update"
    item_id: int


class ItemAddedEvent(_Event):
    type: Literal["item_added"] = "item_added"
    item_id: int
    product_name: str
    delivery_date: Optional[date] = None


class ItemDeletedEvent(_Event):
    type: Literal["item_deleted"] = "item_deleted"
    item_id: int


ProductionEvent = Union[
    NewOrderEvent, StatusUpdateEvent, NotesUpdateEvent, ItemAddedEvent, ItemDeletedEvent
]

# used by the cross-process backend to rebuild events from NOTIFY payloads
event_adapter: TypeAdapter = TypeAdapter(Annotated[ProductionEvent, Field(discriminator="type")])


def parse_event(payload: str) -> ProductionEvent:
    return event_adapter.validate_json(payload)


class ConnectedFrame(BaseModel):
    """Handshake sent to a device right after it subscribes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: Literal["connected"] = "connected"
    client_id: str
    timestamp: str = Field(default="")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
