from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from campus_market.core.errors import APIError
from campus_market.core.rate_limit import SlidingWindowLimiter
from campus_market.core.security import access_token_subject
from campus_market.core.settings import Settings, get_settings
from campus_market.db.session import open_session
from campus_market.models import Profile
from campus_market.realtime.connection_manager import ConnectionManager, Subscriber, SubscriptionLimitExceeded
from campus_market.realtime.protocol import (
    PingCommand,
    ProtocolError,
    SubscribeCommand,
    ack_frame,
    error_frame,
    parse_command,
    pong_frame,
    welcome_frame,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])


def _bearer_token(websocket: WebSocket) -> str | None:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return websocket.query_params.get("access_token")


def _authenticate(websocket: WebSocket) -> str | None:
    """Profile id behind the connection's access token, or None when it must be refused."""
    token = _bearer_token(websocket)
    if not token:
        return None
    try:
        profile_id = access_token_subject(token)
    except APIError as exc:
        logger.debug("WebSocket token rejected code=%s", exc.code)
        return None
    with open_session() as db:
        profile = db.get(Profile, profile_id)
        if profile is None or profile.is_blocked:
            return None
    return profile_id


async def _dispatch(manager: ConnectionManager, subscriber: Subscriber, raw_text: str, settings: Settings) -> None:
    connection_id = subscriber.connection_id
    try:
        command = parse_command(raw_text, max_bytes=settings.ws_max_command_bytes)
    except ProtocolError as exc:
        await manager.send(connection_id, error_frame(code=exc.code, message=exc.message))
        return

    if isinstance(command, PingCommand):
        await manager.send(connection_id, pong_frame(ts=command.ts))
    elif isinstance(command, SubscribeCommand):
        try:
            tables = await manager.subscribe(connection_id, command.tables)
        except SubscriptionLimitExceeded as exc:
            await manager.send(connection_id, error_frame(code="INVALID_COMMAND", message=str(exc)))
            return
        logger.debug("WebSocket subscribed connection_id=%s tables=%s", connection_id, tables)
        await manager.send(connection_id, ack_frame(op="subscribe", details={"tables": tables}))
    else:
        tables = await manager.unsubscribe(connection_id, command.tables)
        await manager.send(connection_id, ack_frame(op="unsubscribe", details={"tables": tables}))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    settings = get_settings()
    manager: ConnectionManager | None = getattr(websocket.app.state, "connection_manager", None)
    if manager is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    user_id = _authenticate(websocket)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = await manager.register(websocket, user_id=user_id)
    await manager.send(
        subscriber.connection_id,
        welcome_frame(connection_id=subscriber.connection_id, user_id=user_id, heartbeat_sec=settings.ws_heartbeat_sec),
    )
    limiter = SlidingWindowLimiter(
        window_seconds=settings.ws_rate_limit_window_sec,
        max_requests=settings.ws_rate_limit_max_commands,
    )

    try:
        while True:
            try:
                raw_text = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_idle_timeout_sec)
            except asyncio.TimeoutError:
                logger.debug("WebSocket idle timeout connection_id=%s", subscriber.connection_id)
                break
            except WebSocketDisconnect:
                break

            if not limiter.hit(subscriber.connection_id):
                await manager.send(
                    subscriber.connection_id,
                    error_frame(code="RATE_LIMITED", message="Command rate limit exceeded"),
                )
                continue
            await _dispatch(manager, subscriber, raw_text, settings)
    finally:
        await manager.unregister(subscriber.connection_id)
