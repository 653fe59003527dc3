from __future__ import annotations

import pytest
from starlette.websockets import WebSocketDisconnect


def _register(client, email: str, password: str = "password123") -> tuple[str, str]:
    response = client.post("/v1/auth/register", json={"email": email, "password": password})
    assert response.status_code == 201
    data = response.json()["data"]
    return data["profile"]["id"], data["tokens"]["access_token"]


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _subscribe(websocket, tables: list[str]) -> dict[str, object]:
    welcome = websocket.receive_json()
    assert welcome["type"] == "connection.welcome"
    websocket.send_json({"op": "subscribe", "tables": tables})
    return websocket.receive_json()


def test_ws_rejects_invalid_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/v1/ws?access_token=invalid-token") as websocket:
            websocket.receive_json()


def test_ws_rejects_unknown_table(client):
    _, token = _register(client, "alice@campus.edu")

    with client.websocket_connect(f"/v1/ws?access_token={token}") as websocket:
        response = _subscribe(websocket, ["profiles"])
        assert response["type"] == "error"
        assert response["error"]["code"] == "INVALID_COMMAND"


def test_ws_ping_pong(client):
    _, token = _register(client, "alice@campus.edu")

    with client.websocket_connect(f"/v1/ws?access_token={token}") as websocket:
        websocket.receive_json()
        websocket.send_json({"op": "ping", "ts": 42})
        assert websocket.receive_json() == {"type": "pong", "ts": 42}


def test_ws_delivers_message_changes_to_participants(client):
    alice_id, alice_token = _register(client, "alice@campus.edu")
    bob_id, bob_token = _register(client, "bob@campus.edu")

    with client.websocket_connect(f"/v1/ws?access_token={bob_token}") as websocket:
        ack = _subscribe(websocket, ["messages"])
        assert ack["type"] == "ack"
        assert ack["op"] == "subscribe"
        assert ack["details"] == {"tables": ["messages"]}

        send_response = client.post(
            "/v1/messages",
            json={"receiver_id": bob_id, "content": "hello over ws"},
            headers=_auth_headers(alice_token),
        )
        assert send_response.status_code == 201

        inserted = websocket.receive_json()
        assert inserted["type"] == "change"
        assert inserted["table"] == "messages"
        assert inserted["op"] == "INSERT"
        assert inserted["row"]["content"] == "hello over ws"
        assert inserted["row"]["sender_id"] == alice_id

        message_id = send_response.json()["data"]["id"]
        read_response = client.post(f"/v1/messages/{message_id}/read", headers=_auth_headers(bob_token))
        assert read_response.json()["data"]["updated"] == 1

        updated = websocket.receive_json()
        assert updated["op"] == "UPDATE"
        assert updated["row"]["id"] == message_id
        assert updated["row"]["read"] is True


def test_ws_hides_message_changes_from_other_profiles(client):
    _, alice_token = _register(client, "alice@campus.edu")
    bob_id, _ = _register(client, "bob@campus.edu")
    carol_id, carol_token = _register(client, "carol@campus.edu")

    with client.websocket_connect(f"/v1/ws?access_token={carol_token}") as websocket:
        _subscribe(websocket, ["messages", "notifications"])

        client.post(
            "/v1/messages",
            json={"receiver_id": bob_id, "content": "private"},
            headers=_auth_headers(alice_token),
        )
        client.post(
            "/v1/messages",
            json={"receiver_id": carol_id, "content": "for carol"},
            headers=_auth_headers(alice_token),
        )

        frames = [websocket.receive_json(), websocket.receive_json()]
        message_rows = [frame["row"] for frame in frames if frame["table"] == "messages"]
        assert [row["content"] for row in message_rows] == ["for carol"]
        notification_rows = [frame["row"] for frame in frames if frame["table"] == "notifications"]
        assert [row["user_id"] for row in notification_rows] == [carol_id]


def test_health_reports_live_connections(client):
    _, token = _register(client, "alice@campus.edu")
    body = client.get("/health").json()["data"]
    assert body["ok"] is True
    assert body["realtime_dispatcher"] is True
    assert body["connections"] == 0

    with client.websocket_connect(f"/v1/ws?access_token={token}") as websocket:
        websocket.receive_json()
        assert client.get("/health").json()["data"]["connections"] == 1


def test_ws_unsubscribe_is_acknowledged(client):
    _, token = _register(client, "alice@campus.edu")

    with client.websocket_connect(f"/v1/ws?access_token={token}") as websocket:
        websocket.receive_json()
        websocket.send_json({"op": "unsubscribe", "tables": ["listings"]})
        ack = websocket.receive_json()
        assert ack == {"type": "ack", "op": "unsubscribe", "ok": True, "details": {"tables": ["listings"]}}
