from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, Iterable, Protocol

from campus_market.core.settings import get_settings
from campus_market.sync.gateway import GatewayError, RemoteGateway

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_sec: float = 0.5
    max_delay_sec: float = 5.0

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        settings = get_settings()
        return cls(
            max_attempts=max(1, settings.read_sync_max_attempts),
            base_delay_sec=settings.read_sync_base_delay_sec,
            max_delay_sec=settings.read_sync_max_delay_sec,
        )

    def delay(self, attempt: int) -> float:
        return min(self.max_delay_sec, self.base_delay_sec * (2 ** (attempt - 1)))


class LocalReadState(Protocol):
    def is_unread(self, message_id: str) -> bool: ...

    def apply_read(self, message_ids: Iterable[str]) -> None: ...

    async def resync(self) -> object: ...


class UnreadTracker:
    """Keeps the global unread counter and pushes read acknowledgements to the backend.

    The counter is reset from every fresh snapshot and only ever decremented locally after the
    backend accepted a read. Acknowledgements that exhaust their retries are remembered so the
    caller can tell the local view is ahead of the backend.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        current_user_id: str,
        state: LocalReadState,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._user_id = current_user_id
        self._state = state
        self._policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self._count = 0
        self._pending_messages: set[str] = set()
        self._pending_partners: set[str] = set()

    @property
    def count(self) -> int:
        return self._count

    @property
    def sync_pending(self) -> bool:
        return bool(self._pending_messages or self._pending_partners)

    @property
    def pending_message_ids(self) -> frozenset[str]:
        return frozenset(self._pending_messages)

    @property
    def pending_partner_ids(self) -> frozenset[str]:
        return frozenset(self._pending_partners)

    def reset(self, unread_total: int) -> None:
        self._count = max(0, unread_total)
        self._pending_messages = {message_id for message_id in self._pending_messages if self._state.is_unread(message_id)}

    async def mark_as_read(self, message_id: str) -> bool:
        acknowledged = await self._with_retry(
            lambda: self._gateway.mark_message_read(message_id, self._user_id),
            action="mark_message_read",
            target=message_id,
        )
        if not acknowledged:
            self._pending_messages.add(message_id)
            return False

        self._pending_messages.discard(message_id)
        # Re-checked after the await so overlapping calls for one message decrement once.
        if self._state.is_unread(message_id):
            self._state.apply_read([message_id])
            self._count = max(0, self._count - 1)
        return True

    async def mark_conversation_as_read(self, partner_id: str) -> bool:
        acknowledged = await self._with_retry(
            lambda: self._gateway.mark_conversation_read(partner_id, self._user_id),
            action="mark_conversation_read",
            target=partner_id,
        )
        if not acknowledged:
            self._pending_partners.add(partner_id)
            return False

        self._pending_partners.discard(partner_id)
        await self._state.resync()
        return True

    async def retry_pending(self) -> bool:
        for partner_id in sorted(self._pending_partners):
            await self.mark_conversation_as_read(partner_id)
        for message_id in sorted(self._pending_messages):
            await self.mark_as_read(message_id)
        return not self.sync_pending

    async def _with_retry(self, call: Callable[[], Awaitable[int]], *, action: str, target: str) -> bool:
        for attempt in range(1, self._policy.max_attempts + 1):
            try:
                await call()
                return True
            except GatewayError as exc:
                if attempt >= self._policy.max_attempts:
                    logger.error(
                        "Read sync failed action=%s target=%s attempts=%s code=%s error=%s",
                        action,
                        target,
                        attempt,
                        exc.code,
                        exc.message,
                    )
                    return False
                delay = self._policy.delay(attempt)
                logger.warning(
                    "Read sync retry action=%s target=%s attempt=%s delay=%.2f code=%s",
                    action,
                    target,
                    attempt,
                    delay,
                    exc.code,
                )
                await self._sleep(delay)
        return False
