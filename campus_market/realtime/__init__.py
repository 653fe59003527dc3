"""Outbox-driven change feed pushed to websocket subscribers."""

from campus_market.realtime.connection_manager import ConnectionManager, Subscriber, SubscriptionLimitExceeded
from campus_market.realtime.dispatcher import RealtimeDispatcher
from campus_market.realtime.protocol import SUBSCRIBABLE_TABLES
from campus_market.realtime.publisher import RealtimePublisher

__all__ = [
    "SUBSCRIBABLE_TABLES",
    "ConnectionManager",
    "RealtimeDispatcher",
    "RealtimePublisher",
    "Subscriber",
    "SubscriptionLimitExceeded",
]
