from __future__ import annotations

import asyncio

from aiohttp import web
from aiohttp.test_utils import TestServer
import pytest

from campus_market.sync.gateway import ChangeEvent, GatewayError, MessageDraft
from campus_market.sync.http_gateway import HttpGateway
from campus_market.sync.view import EMPTY_STATE_TEXT, ConversationView

TOKEN = "token-for-me"


def _row(message_id: str, sender: str, receiver: str, content: str) -> dict[str, object]:
    return {
        "id": message_id,
        "sender_id": sender,
        "receiver_id": receiver,
        "content": content,
        "listing_id": None,
        "lost_found_id": None,
        "read": False,
        "created_at": "2026-09-01T12:00:00+00:00",
    }


def _backend(state: dict[str, list]) -> web.Application:
    def _authorized(request: web.Request) -> bool:
        return request.headers.get("Authorization") == f"Bearer {TOKEN}"

    async def list_messages(request: web.Request) -> web.Response:
        if not _authorized(request):
            return web.json_response({"error": {"code": "invalid_token", "message": "bad token"}}, status=401)
        if state["messages_reply"]:
            return state["messages_reply"][0]()
        return web.json_response({"data": {"messages": [_row("m1", "bob", "me", "hello")]}})

    async def send_message(request: web.Request) -> web.Response:
        body = await request.json()
        state["sent"].append(body)
        if body["content"] == "boom":
            return web.json_response({"error": {"code": "invalid_target", "message": "nope"}}, status=400)
        return web.json_response({"data": _row("m2", "me", body["receiver_id"], body["content"])}, status=201)

    async def batch_profiles(request: web.Request) -> web.Response:
        ids = (await request.json())["ids"]
        state["batches"].append(ids)
        return web.json_response({"data": {"profiles": [{"id": profile_id, "full_name": profile_id.upper()} for profile_id in ids]}})

    async def mark_read(request: web.Request) -> web.Response:
        state["read"].append(request.match_info["message_id"])
        return web.json_response({"data": {"updated": 1}})

    async def mark_conversation_read(request: web.Request) -> web.Response:
        state["read"].append((await request.json())["partner_id"])
        return web.json_response({"data": {"updated": 3}})

    async def websocket(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        state["ws_tokens"].append(request.query.get("access_token"))
        await ws.send_json({"type": "connection.welcome", "connection_id": "c1", "user_id": "me"})
        command = await ws.receive_json()
        state["commands"].append(command)
        await ws.send_json({"type": "ack", "op": "subscribe", "ok": True, "details": {"tables": command["tables"]}})
        await ws.send_json({"type": "change", "table": "notifications", "op": "INSERT", "row": {}})
        await ws.send_json({"type": "change", "table": "messages", "op": "insert", "row": _row("m3", "bob", "me", "live")})
        async for _ in ws:
            pass
        return ws

    app = web.Application()
    app.router.add_get("/v1/messages", list_messages)
    app.router.add_post("/v1/messages", send_message)
    app.router.add_post("/v1/messages/read", mark_conversation_read)
    app.router.add_post("/v1/messages/{message_id}/read", mark_read)
    app.router.add_post("/v1/profiles/batch", batch_profiles)
    app.router.add_get("/v1/ws", websocket)
    return app


def _state() -> dict[str, list]:
    return {"sent": [], "batches": [], "read": [], "ws_tokens": [], "commands": [], "messages_reply": []}


async def _with_gateway(state: dict[str, list], body, *, token: str = TOKEN):
    server = TestServer(_backend(state))
    await server.start_server()
    try:
        async with HttpGateway(str(server.make_url("/")), token) as gateway:
            return await body(gateway)
    finally:
        await server.close()


def test_queries_and_mutations_round_trip():
    state = _state()

    async def body(gateway: HttpGateway):
        messages = await gateway.fetch_messages("me")
        sent = await gateway.insert_message(MessageDraft(sender_id="me", receiver_id="bob", content="hi", listing_id="l-1"))
        single = await gateway.mark_message_read("m1", "me")
        bulk = await gateway.mark_conversation_read("bob", "me")
        return messages, sent, single, bulk

    messages, sent, single, bulk = asyncio.run(_with_gateway(state, body))
    assert [message.content for message in messages] == ["hello"]
    assert messages[0].is_unread_for("me")
    assert sent.id == "m2"
    assert state["sent"] == [{"receiver_id": "bob", "content": "hi", "listing_id": "l-1"}]
    assert (single, bulk) == (1, 3)
    assert state["read"] == ["m1", "bob"]


def test_profile_lookup_is_chunked():
    state = _state()
    ids = [f"user-{index}" for index in range(150)]

    async def body(gateway: HttpGateway):
        return await gateway.fetch_profiles(ids + ids[:5])

    profiles = asyncio.run(_with_gateway(state, body))
    assert len(profiles) == 150
    assert [len(batch) for batch in state["batches"]] == [100, 50]
    assert profiles[0].full_name == "USER-0"


def test_error_envelope_becomes_gateway_error():
    state = _state()

    async def body(gateway: HttpGateway):
        await gateway.insert_message(MessageDraft(sender_id="me", receiver_id="bob", content="boom"))

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(_with_gateway(state, body))
    assert exc_info.value.code == "invalid_target"
    assert exc_info.value.status == 400


def test_rejected_token_becomes_gateway_error():
    async def body(gateway: HttpGateway):
        await gateway.fetch_messages("me")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(_with_gateway(_state(), body, token="wrong"))
    assert exc_info.value.code == "invalid_token"


def test_subscription_forwards_matching_changes():
    state = _state()

    async def body(gateway: HttpGateway):
        received: list[ChangeEvent] = []
        arrived = asyncio.Event()

        async def handler(event: ChangeEvent) -> None:
            received.append(event)
            arrived.set()

        subscription = await gateway.subscribe("messages", "me", handler)
        try:
            await asyncio.wait_for(arrived.wait(), timeout=2)
        finally:
            await subscription.close()
        return received

    received = asyncio.run(_with_gateway(state, body))
    assert state["ws_tokens"] == [TOKEN]
    assert state["commands"] == [{"op": "subscribe", "tables": ["messages"]}]
    assert [(event.table, event.op, event.row["content"]) for event in received] == [("messages", "INSERT", "live")]


def _bad_gateway_page() -> web.Response:
    return web.Response(text="<html><body>502 Bad Gateway</body></html>", status=502, content_type="text/html")


def test_html_error_page_becomes_gateway_error():
    state = _state()
    state["messages_reply"].append(_bad_gateway_page)

    async def body(gateway: HttpGateway):
        await gateway.fetch_messages("me")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(_with_gateway(state, body))
    assert exc_info.value.code == "http_error"
    assert exc_info.value.status == 502


def test_html_success_page_is_an_invalid_response():
    state = _state()
    state["messages_reply"].append(lambda: web.Response(text="<html>maintenance</html>", content_type="text/html"))

    async def body(gateway: HttpGateway):
        await gateway.fetch_messages("me")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(_with_gateway(state, body))
    assert exc_info.value.code == "invalid_response"


def test_malformed_message_row_is_an_invalid_response():
    state = _state()
    row = _row("m1", "bob", "me", "hello")
    del row["id"]
    state["messages_reply"].append(lambda: web.json_response({"data": {"messages": [row]}}))

    async def body(gateway: HttpGateway):
        await gateway.fetch_messages("me")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(_with_gateway(state, body))
    assert exc_info.value.code == "invalid_response"


def test_view_mounts_through_a_bad_gateway_page():
    state = _state()
    state["messages_reply"].append(_bad_gateway_page)

    async def body(gateway: HttpGateway):
        view = ConversationView(gateway, "me")
        await view.mount()
        try:
            assert view.mounted
            assert view.live
            assert view.empty_state == EMPTY_STATE_TEXT
            assert view.sync.last_error is not None
        finally:
            await view.unmount()
        return view

    view = asyncio.run(_with_gateway(state, body))
    assert not view.live
    assert state["commands"] == [{"op": "subscribe", "tables": ["messages"]}]
