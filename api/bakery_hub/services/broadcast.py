# bakery_hub/services/broadcast.py
"""
BroadcastHub - real-time fan-out of production events to staff devices.

Each connected device is a subscriber with its own bounded queue. The hub
formats events as event-stream frames (``data: <json>\\n\\n``), sends a
``connected`` handshake first and a comment heartbeat every
``HEARTBEAT_INTERVAL_SECONDS``. A device whose delivery fails is dropped
without affecting the others.

Delivery is best effort: there is no replay or backlog for late joiners.
The registry is per process; a multi-process deployment needs the
``postgres`` backend so every process hears every event.
"""
from __future__ import annotations
import asyncio
import logging
import secrets
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Set

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from bakery_hub.dates import epoch_millis, iso_timestamp
from bakery_hub.services.events import ConnectedFrame, ProductionEvent, parse_event

logger = logging.getLogger(__name__)

Deliver = Callable[[ProductionEvent], Awaitable[int]]


def format_frame(payload_json: str) -> str:
    return f"data: {payload_json}\n\n"


def heartbeat_frame() -> str:
    return f":heartbeat {epoch_millis()}\n\n"


def new_client_id() -> str:
    return f"client-{epoch_millis()}-{secrets.token_hex(4)}"


class SubscriberClosed(Exception):
    pass


# =========================================================================
# Subscribers
# =========================================================================

class Subscriber(Protocol):
    client_id: str

    def send(self, frame: str) -> None: ...

    def close(self) -> None: ...


class QueueSubscriber:
    """One device connection; frames wait in a bounded queue until streamed."""

    def __init__(self, client_id: str, maxsize: int = 100):
        self.client_id = client_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def send(self, frame: str) -> None:
        if self.closed:
            raise SubscriberClosed(self.client_id)
        # raises asyncio.QueueFull when the device stopped reading
        self.queue.put_nowait(frame)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # make room for the end-of-stream marker
        while self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self.queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self.queue.get()
            if frame is None:
                return
            yield frame


# =========================================================================
# Fan-out backends
# =========================================================================

class InProcessFanout:
    """Deliver straight to this process' registry."""

    def __init__(self):
        self._deliver: Optional[Deliver] = None

    async def start(self, deliver: Deliver) -> None:
        self._deliver = deliver

    async def stop(self) -> None:
        self._deliver = None

    async def publish(self, event: ProductionEvent) -> Optional[int]:
        if self._deliver is None:
            raise RuntimeError("BroadcastHub is not started")
        return await self._deliver(event)


class PostgresNotifyFanout:
    """
    Publish through PostgreSQL LISTEN/NOTIFY.

    Every process listens on the same channel and delivers each notification to
    its own local subscribers, so publishing returns before any delivery.
    """

    def __init__(self, dsn: str, channel: str = "production_events"):
        self.dsn = dsn
        self.channel = channel
        self._conn: Optional[asyncpg.Connection] = None
        self._deliver: Optional[Deliver] = None
        self._publish_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def start(self, deliver: Deliver) -> None:
        self._deliver = deliver
        self._conn = await asyncpg.connect(self.dsn)
        await self._conn.add_listener(self.channel, self._on_notify)
        logger.info(f"Listening for production events on channel '{self.channel}'")

    async def stop(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._conn is not None:
            try:
                await self._conn.remove_listener(self.channel, self._on_notify)
            finally:
                await self._conn.close()
                self._conn = None
        self._deliver = None

    async def publish(self, event: ProductionEvent) -> Optional[int]:
        if self._conn is None:
            raise RuntimeError("BroadcastHub is not started")
        # one connection, one query at a time
        async with self._publish_lock:
            await self._conn.execute("SELECT pg_notify($1, $2)", self.channel, event.to_json())
        return None

    def _on_notify(self, connection, pid, channel, payload) -> None:
        if self._deliver is None:
            return
        try:
            event = parse_event(payload)
        except PydanticValidationError:
            logger.warning(f"Ignoring malformed notification on '{channel}': {payload[:200]}")
            return
        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def build_backend(settings):
    backend = (settings.BROADCAST_BACKEND or "memory").lower()
    if backend == "memory":
        return InProcessFanout()
    if backend == "postgres":
        from bakery_hub.database import get_dsn
        return PostgresNotifyFanout(get_dsn(), settings.BROADCAST_CHANNEL)
    raise ValueError(f"Unknown BROADCAST_BACKEND: {settings.BROADCAST_BACKEND}")


# =========================================================================
# Hub
# =========================================================================

class BroadcastHub:
    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        queue_size: int = 100,
        backend=None,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.queue_size = queue_size
        self.backend = backend or InProcessFanout()
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self.running = False

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        await self.backend.start(self._deliver)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self.running = True
        logger.info(f"BroadcastHub started (backend={type(self.backend).__name__})")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        await self.backend.stop()

        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            sub.close()
        logger.info(f"BroadcastHub stopped, closed {len(subscribers)} connection(s)")

    # ---------------------------------------------------------------------
    # Registry
    # ---------------------------------------------------------------------

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    async def register(self, subscriber: Optional[Subscriber] = None) -> Subscriber:
        """Add a device and queue its handshake frame."""
        if subscriber is None:
            subscriber = QueueSubscriber(new_client_id(), maxsize=self.queue_size)

        handshake = ConnectedFrame(client_id=subscriber.client_id, timestamp=iso_timestamp())
        subscriber.send(format_frame(handshake.to_json()))

        async with self._lock:
            self._subscribers[subscriber.client_id] = subscriber
            total = len(self._subscribers)
        logger.info(f"Stream client connected: {subscriber.client_id} (total: {total})")
        return subscriber

    async def deregister(self, client_id: str) -> bool:
        async with self._lock:
            subscriber = self._subscribers.pop(client_id, None)
            total = len(self._subscribers)
        if subscriber is None:
            return False
        subscriber.close()
        logger.info(f"Stream client disconnected: {client_id} (total: {total})")
        return True

    # ---------------------------------------------------------------------
    # Delivery
    # ---------------------------------------------------------------------

    async def broadcast(self, event: ProductionEvent) -> Optional[int]:
        """
        Stamp and publish an event.

        Returns the number of local devices reached, or None when the backend
        delivers asynchronously.
        """
        stamped = event.model_copy(update={"timestamp": iso_timestamp()})
        return await self.backend.publish(stamped)

    async def _deliver(self, event: ProductionEvent) -> int:
        logger.debug(f"Broadcasting {event.type} to {self.client_count} client(s)")
        return await self._send_all(format_frame(event.to_json()))

    async def send_heartbeat(self) -> int:
        return await self._send_all(heartbeat_frame())

    async def _send_all(self, frame: str) -> int:
        async with self._lock:
            targets = list(self._subscribers.values())

        delivered = 0
        failed: List[str] = []
        for sub in targets:
            try:
                sub.send(frame)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping stream client {sub.client_id}: {type(e).__name__} {e}")
                failed.append(sub.client_id)

        for client_id in failed:
            await self.deregister(client_id)
        return delivered

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if not self._subscribers:
                continue
            try:
                await self.send_heartbeat()
            except Exception:
                logger.exception("Heartbeat round failed")

    # ---------------------------------------------------------------------
    # Streaming
    # ---------------------------------------------------------------------

    async def stream(self, subscriber: Optional[QueueSubscriber] = None) -> AsyncIterator[str]:
        """
        Yield frames for one device until it disconnects or the hub stops.

        Without a subscriber, a new one is registered on first iteration, so a
        response whose body never starts leaves nothing in the registry.
        """
        if subscriber is None:
            subscriber = await self.register()
        try:
            async for frame in subscriber.frames():
                yield frame
        finally:
            await self.deregister(subscriber.client_id)
