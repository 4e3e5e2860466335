"""Shared fixtures: in-memory SQLite, services, and an app client.

Environment is set before anything from ``bakery_hub`` is imported, since
settings are read at import time.
"""

import os
import tempfile
from datetime import date
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_CREATE_SCHEMA"] = "true"
os.environ["BAKERY_DATA_ROOT"] = tempfile.mkdtemp(prefix="bakery-hub-tests-")
os.environ["OWNER_TOKEN"] = "owner-test-token"
os.environ["COOK_TOKEN"] = "cook-test-token"
os.environ["BROADCAST_BACKEND"] = "memory"

import pytest  # noqa: E402

from bakery_hub.database import build_engine, build_session_factory, create_schema  # noqa: E402
from bakery_hub.db_models import Order  # noqa: E402
from bakery_hub.models import OrderCreateIn  # noqa: E402
from bakery_hub.services.orders import OrderService  # noqa: E402
from bakery_hub.services.sequence import SequenceAllocator  # noqa: E402

OWNER_HEADERS = {"Authorization": "Bearer owner-test-token"}
COOK_HEADERS = {"Authorization": "Bearer cook-test-token"}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db_session():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    factory = build_session_factory(engine)
    async with factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def allocator():
    return SequenceAllocator(max_attempts=5)


@pytest.fixture
def order_service(db_session, allocator):
    return OrderService(db_session, allocator)


def order_input(**overrides):
    """Valid phone order for 2026-01-28 with two items (2 x 25.00 + 1 x 12.50)."""
    data = {
        "customer_name": "Ana Müller",
        "customer_phone": "+41 79 123 45 67",
        "customer_email": "ana@example.ch",
        "delivery_date": "2026-01-28",
        "delivery_time": "10:00",
        "delivery_type": "pickup",
        "channel": "phone",
        "order_items": [
            {"product_name": "Chocolate cake", "quantity": "2", "unit_price": "25.00"},
            {"product_name": "Lemon tart", "quantity": "1", "unit_price": "12.50"},
        ],
    }
    data.update(overrides)
    return data


def make_order_in(**overrides) -> OrderCreateIn:
    return OrderCreateIn.model_validate(order_input(**overrides))


async def insert_numbered_order(db, number: str, delivery: date = date(2026, 1, 15)) -> Order:
    """Persist a bare order with a fixed number (bypasses the allocator)."""
    order = Order(
        order_number=number,
        customer_name="Seed",
        delivery_date=delivery,
        total_amount=Decimal("0"),
    )
    db.add(order)
    await db.commit()
    return order


@pytest.fixture
def owner_headers():
    return dict(OWNER_HEADERS)


@pytest.fixture
def cook_headers():
    return dict(COOK_HEADERS)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from bakery_hub.main import app

    # lifespan builds a fresh in-memory database per client
    with TestClient(app) as c:
        yield c
