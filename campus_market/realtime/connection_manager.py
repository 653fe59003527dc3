from __future__ import annotations

import asyncio
from collections.abc import Collection, Iterable
import logging
import uuid

from fastapi import WebSocket

logger = logging.getLogger(__name__)

OUTGOING_QUEUE_SIZE = 200
SLOW_CONSUMER_CLOSE_CODE = 1013


class SubscriptionLimitExceeded(ValueError):
    pass


class Subscriber:
    """One websocket connection: its table subscriptions and an outgoing frame queue."""

    def __init__(self, websocket: WebSocket, *, user_id: str) -> None:
        self.connection_id = str(uuid.uuid4())
        self.user_id = user_id
        self.websocket = websocket
        self.tables: set[str] = set()
        self._outbox: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=OUTGOING_QUEUE_SIZE)
        self._writer: asyncio.Task[None] | None = None

    def wants(self, table: str, audience: Collection[str]) -> bool:
        if table not in self.tables:
            return False
        return not audience or self.user_id in audience

    def offer(self, frame: dict[str, object]) -> bool:
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def start_writer(self, on_failure) -> None:
        self._writer = asyncio.create_task(self._drain(on_failure))

    async def stop_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None or writer is asyncio.current_task():
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def _drain(self, on_failure) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self.websocket.send_json(frame)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "WebSocket send failed connection_id=%s user_id=%s error=%s",
                    self.connection_id,
                    self.user_id,
                    exc,
                )
                await on_failure(self)
                return


class ConnectionManager:
    def __init__(self, *, max_subscriptions_per_connection: int) -> None:
        self._max_tables = max_subscriptions_per_connection
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket, *, user_id: str) -> Subscriber:
        subscriber = Subscriber(websocket, user_id=user_id)
        async with self._lock:
            self._subscribers[subscriber.connection_id] = subscriber
        subscriber.start_writer(self._writer_failed)
        logger.info("WebSocket connected connection_id=%s user_id=%s", subscriber.connection_id, user_id)
        return subscriber

    async def _writer_failed(self, subscriber: Subscriber) -> None:
        await self.unregister(subscriber.connection_id, close_socket=False)

    async def unregister(self, connection_id: str, *, close_socket: bool = True, close_code: int = 1000) -> None:
        async with self._lock:
            subscriber = self._subscribers.pop(connection_id, None)
        if subscriber is None:
            return

        await subscriber.stop_writer()
        if close_socket:
            try:
                await subscriber.websocket.close(code=close_code)
            except Exception:
                logger.debug("WebSocket already closed connection_id=%s", connection_id)
        logger.info(
            "WebSocket disconnected connection_id=%s user_id=%s tables=%s",
            connection_id,
            subscriber.user_id,
            sorted(subscriber.tables),
        )

    async def _get(self, connection_id: str) -> Subscriber | None:
        async with self._lock:
            return self._subscribers.get(connection_id)

    async def send(self, connection_id: str, payload: dict[str, object]) -> bool:
        subscriber = await self._get(connection_id)
        if subscriber is None:
            return False
        if subscriber.offer(payload):
            return True
        logger.warning("Dropping slow WebSocket consumer connection_id=%s", connection_id)
        await self.unregister(connection_id, close_code=SLOW_CONSUMER_CLOSE_CODE)
        return False

    async def fanout_table(self, table: str, payload: dict[str, object], *, audience: Collection[str] = ()) -> int:
        """Queue ``payload`` for subscribers of ``table``; a non-empty audience limits it to those users."""
        async with self._lock:
            targets = [s.connection_id for s in self._subscribers.values() if s.wants(table, audience)]

        delivered = 0
        for connection_id in targets:
            delivered += await self.send(connection_id, payload)
        return delivered

    async def subscribe(self, connection_id: str, tables: Iterable[str]) -> list[str]:
        requested = list(dict.fromkeys(tables))
        async with self._lock:
            subscriber = self._subscribers.get(connection_id)
            if subscriber is None:
                return []
            if len(subscriber.tables.union(requested)) > self._max_tables:
                raise SubscriptionLimitExceeded(f"At most {self._max_tables} tables per connection")
            subscriber.tables.update(requested)
        return requested

    async def unsubscribe(self, connection_id: str, tables: Iterable[str]) -> list[str]:
        requested = list(dict.fromkeys(tables))
        async with self._lock:
            subscriber = self._subscribers.get(connection_id)
            if subscriber is not None:
                subscriber.tables.difference_update(requested)
        return requested

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._subscribers)
