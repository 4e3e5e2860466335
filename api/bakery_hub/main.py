# bakery_hub/main.py
# Bakery Hub - order fulfillment, production board and ledger
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bakery_hub.settings import settings
from bakery_hub.database import init_db, close_db, check_db_health
from bakery_hub.errors import register_exception_handlers
from bakery_hub.services.broadcast import BroadcastHub, build_backend
from bakery_hub.services.sequence import SequenceAllocator

from bakery_hub.routers.orders import router as orders_router
from bakery_hub.routers.production import router as production_router
from bakery_hub.routers.accounting import router as accounting_router
from bakery_hub.routers.clients import router as clients_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from bakery_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ---------------------------------------------------------
# Lifespan: database, broadcast hub, order numbering
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    logger.info("Database initialized")

    hub = BroadcastHub(
        heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
        queue_size=settings.SUBSCRIBER_QUEUE_SIZE,
        backend=build_backend(settings),
    )
    await hub.start()
    app.state.hub = hub
    app.state.allocator = SequenceAllocator(max_attempts=settings.ORDER_NUMBER_MAX_ATTEMPTS)
    try:
        yield
    finally:
        await hub.stop()
        await close_db()
        logger.info("Database disconnected")


# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Bakery Hub API",
    version=VERSION,
    description="Orders, production tracking and bookkeeping for the bakery",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(orders_router)
app.include_router(production_router)
app.include_router(accounting_router)
app.include_router(clients_router)


# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database status and connected devices."""
    result = {
        "status": "ok",
        "version": VERSION,
        "broadcast_backend": settings.BROADCAST_BACKEND,
        "stream_clients": app.state.hub.client_count if hasattr(app.state, "hub") else 0,
    }
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
    return result
