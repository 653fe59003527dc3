from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Iterable, Mapping, TypeVar

import aiohttp

from campus_market.sync.gateway import ChangeEvent, ChangeHandler, GatewayError, MessageDraft
from campus_market.sync.records import MessageRecord, ProfileRecord

logger = logging.getLogger(__name__)

PROFILE_BATCH_SIZE = 100

T = TypeVar("T")


def _parse(parser: Callable[[Mapping[str, object]], T], rows: Iterable[Mapping[str, object]], kind: str) -> list[T]:
    try:
        return [parser(row) for row in rows]
    except (KeyError, TypeError, ValueError) as exc:
        raise GatewayError("invalid_response", f"Malformed {kind} row: {exc}") from exc


def _updated(data: object) -> int:
    try:
        return int(data.get("updated", 0)) if isinstance(data, dict) else 0
    except (TypeError, ValueError) as exc:
        raise GatewayError("invalid_response", f"Malformed update count: {exc}") from exc


class WebSocketSubscription:
    """Reader task bound to one open change-feed socket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, table: str, handler: ChangeHandler) -> None:
        self._ws = ws
        self._table = table
        self._handler = handler
        self._task: asyncio.Task[None] | None = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            if not self._ws.closed:
                await self._ws.close()

    async def _read_loop(self) -> None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed change frame table=%s", self._table)
                    continue
                if not isinstance(frame, dict) or frame.get("type") != "change" or frame.get("table") != self._table:
                    continue
                row = frame.get("row") if isinstance(frame.get("row"), dict) else {}
                await self._handler(ChangeEvent(table=self._table, op=str(frame.get("op", "")).upper(), row=row))
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                logger.info("Change feed closed table=%s type=%s", self._table, msg.type)
                return


class HttpGateway:
    """RemoteGateway backed by the Campus Market REST API and its websocket change feed."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        api_prefix: str = "/v1",
        session: aiohttp.ClientSession | None = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/") + api_prefix
        self._access_token = access_token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def __aenter__(self) -> HttpGateway:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, *, payload: dict[str, object] | None = None) -> object:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            async with self._client().request(method, f"{self._base_url}{path}", json=payload, headers=headers) as response:
                raw = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GatewayError("network_error", str(exc) or type(exc).__name__) from exc
        except UnicodeDecodeError as exc:
            raise GatewayError("invalid_response", f"Undecodable body for {method} {path}") from exc

        try:
            body = json.loads(raw) if raw else None
        except ValueError:
            # Proxies and load balancers answer with HTML error pages.
            body = None
            if status < 400:
                raise GatewayError("invalid_response", f"Non-JSON body for {method} {path}", status=status) from None

        if status >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            error = error if isinstance(error, dict) else {}
            raise GatewayError(
                str(error.get("code", "http_error")),
                str(error.get("message", f"Request failed with status {status}")),
                status=status,
            )
        if not isinstance(body, dict) or "data" not in body:
            raise GatewayError("invalid_response", f"Unexpected response body for {method} {path}", status=status)
        return body["data"]

    async def _rows(self, method: str, path: str, key: str, *, payload: dict[str, object] | None = None) -> list[dict]:
        data = await self._request(method, path, payload=payload)
        rows = data.get(key) if isinstance(data, dict) else None
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise GatewayError("invalid_response", f"Expected a list of {key} from {method} {path}")
        return rows

    async def fetch_messages(self, user_id: str) -> list[MessageRecord]:
        rows = await self._rows("GET", "/messages", "messages")
        mine = [row for row in rows if user_id in (row.get("sender_id"), row.get("receiver_id"))]
        return _parse(MessageRecord.from_row, mine, "message")

    async def fetch_profiles(self, profile_ids: Iterable[str]) -> list[ProfileRecord]:
        ids = list(dict.fromkeys(profile_ids))
        profiles: list[ProfileRecord] = []
        for start in range(0, len(ids), PROFILE_BATCH_SIZE):
            rows = await self._rows("POST", "/profiles/batch", "profiles", payload={"ids": ids[start : start + PROFILE_BATCH_SIZE]})
            profiles.extend(_parse(ProfileRecord.from_row, rows, "profile"))
        return profiles

    async def insert_message(self, draft: MessageDraft) -> MessageRecord:
        payload: dict[str, object] = {"receiver_id": draft.receiver_id, "content": draft.content}
        if draft.listing_id:
            payload["listing_id"] = draft.listing_id
        if draft.lost_found_id:
            payload["lost_found_id"] = draft.lost_found_id
        row = await self._request("POST", "/messages", payload=payload)
        if not isinstance(row, dict):
            raise GatewayError("invalid_response", "Expected the created message row")
        [message] = _parse(MessageRecord.from_row, [row], "message")
        return message

    async def mark_message_read(self, message_id: str, receiver_id: str) -> int:
        data = await self._request("POST", f"/messages/{message_id}/read")
        return _updated(data)

    async def mark_conversation_read(self, partner_id: str, receiver_id: str) -> int:
        data = await self._request("POST", "/messages/read", payload={"partner_id": partner_id})
        return _updated(data)

    async def subscribe(self, table: str, user_id: str, handler: ChangeHandler) -> WebSocketSubscription:
        ws_url = self._base_url.replace("http://", "ws://", 1).replace("https://", "wss://", 1) + "/ws"
        try:
            ws = await self._client().ws_connect(ws_url, params={"access_token": self._access_token}, heartbeat=20)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GatewayError("realtime_unavailable", str(exc) or type(exc).__name__) from exc

        try:
            await ws.send_json({"op": "subscribe", "tables": [table]})
            while True:
                msg = await ws.receive(timeout=self._timeout.total)
                if msg.type != aiohttp.WSMsgType.TEXT:
                    raise GatewayError("realtime_unavailable", "Change feed closed during subscribe")
                frame = json.loads(msg.data)
                if not isinstance(frame, dict):
                    continue
                if frame.get("type") == "error":
                    error = frame.get("error", {})
                    raise GatewayError(str(error.get("code", "realtime_error")), str(error.get("message", "")))
                if frame.get("type") == "ack" and frame.get("op") == "subscribe":
                    break
        except (GatewayError, aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
            await ws.close()
            if isinstance(exc, GatewayError):
                raise
            raise GatewayError("realtime_unavailable", str(exc) or type(exc).__name__) from exc

        logger.info("Change feed subscribed table=%s user_id=%s", table, user_id)
        return WebSocketSubscription(ws, table, handler)
