from __future__ import annotations

import logging

from campus_market.models import RealtimeOutboxEvent
from campus_market.realtime.connection_manager import ConnectionManager
from campus_market.realtime.protocol import change_frame
from campus_market.services.realtime_service import decode_audience

logger = logging.getLogger(__name__)


class RealtimePublisher:
    """Turns an outbox row into a change frame and fans it out to the row's audience."""

    def __init__(self, connection_manager: ConnectionManager) -> None:
        self._connections = connection_manager

    async def publish(self, event: RealtimeOutboxEvent) -> int:
        occurred_at, row = event.change()
        frame = change_frame(
            event_id=event.event_id,
            table=event.table_name,
            op=event.op,
            occurred_at=occurred_at,
            row=row,
        )
        audience = decode_audience(event.audience)
        delivered = await self._connections.fanout_table(event.table_name, frame, audience=audience)
        logger.debug(
            "Change published event_id=%s table=%s op=%s audience=%s delivered=%s",
            event.event_id,
            event.table_name,
            event.op,
            len(audience) or "public",
            delivered,
        )
        return delivered
