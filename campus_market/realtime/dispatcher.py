from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_market.models import RealtimeOutboxEvent
from campus_market.realtime.publisher import RealtimePublisher

logger = logging.getLogger(__name__)

BASE_RETRY_DELAY_SEC = 0.5
MAX_RETRY_DELAY_SEC = 30.0
MAX_ERROR_LENGTH = 1000


def retry_delay(attempts: int) -> float:
    return min(MAX_RETRY_DELAY_SEC, BASE_RETRY_DELAY_SEC * 2 ** (attempts - 1))


class RealtimeDispatcher:
    """Background task that publishes due outbox rows oldest first.

    A failed row keeps its place in the table and is retried after an exponential delay,
    so one bad row never blocks the rest of the batch.
    """

    def __init__(
        self,
        *,
        publisher: RealtimePublisher,
        session_factory: Callable[[], Session],
        poll_interval_sec: float,
        batch_size: int,
    ) -> None:
        self._publisher = publisher
        self._session_factory = session_factory
        self._poll_interval_sec = poll_interval_sec
        self._batch_size = batch_size
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="realtime-dispatcher")
        logger.info("Realtime dispatcher started poll_sec=%s batch_size=%s", self._poll_interval_sec, self._batch_size)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._stopping.set()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Realtime dispatcher stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.process_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime dispatcher pass failed")
                processed = 0
            if processed < self._batch_size:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval_sec)
                except asyncio.TimeoutError:
                    pass

    def _due_events(self, db: Session, now: datetime) -> list[RealtimeOutboxEvent]:
        query = (
            select(RealtimeOutboxEvent)
            .where(RealtimeOutboxEvent.published_at.is_(None), RealtimeOutboxEvent.next_attempt_at <= now)
            .order_by(RealtimeOutboxEvent.id)
            .limit(self._batch_size)
        )
        return list(db.scalars(query))

    async def _deliver(self, event: RealtimeOutboxEvent) -> None:
        try:
            await self._publisher.publish(event)
        except Exception as exc:
            event.attempts += 1
            event.last_error = str(exc)[:MAX_ERROR_LENGTH]
            event.next_attempt_at = datetime.now(UTC) + timedelta(seconds=retry_delay(event.attempts))
            logger.warning(
                "Realtime publish failed event_id=%s table=%s attempts=%s error=%s",
                event.event_id,
                event.table_name,
                event.attempts,
                exc,
            )
            return
        event.published_at = datetime.now(UTC)
        event.last_error = None

    async def process_once(self) -> int:
        with self._session_factory() as db:
            events = self._due_events(db, datetime.now(UTC))
            for event in events:
                await self._deliver(event)
            if events:
                db.commit()
            return len(events)
