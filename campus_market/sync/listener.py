from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable

from campus_market.sync.gateway import MESSAGES_TABLE, ChangeEvent, GatewayError, RemoteGateway, Subscription

logger = logging.getLogger(__name__)


class LiveUpdateListener:
    """Scoped subscription to message inserts and updates for one user.

    Every relevant event is forwarded to ``on_change``; the handler is expected to refetch
    rather than patch state from the event row. The subscription is released on exit on every
    path, including when the body raises.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        current_user_id: str,
        on_change: Callable[[ChangeEvent], Awaitable[None]],
        *,
        table: str = MESSAGES_TABLE,
        ops: Iterable[str] = ("INSERT", "UPDATE"),
    ) -> None:
        self._gateway = gateway
        self._user_id = current_user_id
        self._on_change = on_change
        self._table = table
        self._ops = frozenset(op.upper() for op in ops)
        self._subscription: Subscription | None = None
        self.events_handled = 0

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def start(self) -> bool:
        if self._subscription is not None:
            return True
        try:
            self._subscription = await self._gateway.subscribe(self._table, self._user_id, self._dispatch)
        except GatewayError as exc:
            logger.warning("Live updates unavailable user_id=%s code=%s error=%s", self._user_id, exc.code, exc.message)
            return False
        logger.debug("Live updates started user_id=%s table=%s", self._user_id, self._table)
        return True

    async def stop(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        await subscription.close()
        logger.debug("Live updates stopped user_id=%s table=%s", self._user_id, self._table)

    async def __aenter__(self) -> LiveUpdateListener:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _dispatch(self, event: ChangeEvent) -> None:
        if self._subscription is None:
            return
        if event.table != self._table or event.op.upper() not in self._ops:
            return
        if event.row and not event.touches_user(self._user_id):
            return
        self.events_handled += 1
        try:
            await self._on_change(event)
        except Exception:
            logger.exception("Live update handler failed user_id=%s op=%s", self._user_id, event.op)
