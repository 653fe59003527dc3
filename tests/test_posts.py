from __future__ import annotations

from sqlalchemy import update

import campus_market.db.session as db_session
from campus_market.models import Profile


def _register(client, email: str, full_name: str) -> tuple[str, str]:
    response = client.post(
        "/v1/auth/register",
        json={"email": email, "password": "password123", "full_name": full_name},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    return data["profile"]["id"], data["tokens"]["access_token"]


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _publish(client, token: str, content: str, image_url: str | None = None) -> dict[str, object]:
    response = client.post(
        "/v1/posts",
        json={"content": content, "image_url": image_url},
        headers=_auth_headers(token),
    )
    assert response.status_code == 201
    return response.json()["data"]


def test_publish_post_with_image(client):
    alice_id, token = _register(client, "alice@campus.edu", "Alice")

    created = _publish(client, token, "  Selling my old bike, DM me  ", "https://cdn.campus.edu/items/bike.jpg")
    assert created["post"]["content"] == "Selling my old bike, DM me"
    assert created["post"]["image_url"] == "https://cdn.campus.edu/items/bike.jpg"
    assert created["post"]["user_id"] == alice_id
    assert created["author"]["full_name"] == "Alice"

    detail = client.get(f"/v1/posts/{created['post']['id']}", headers=_auth_headers(token)).json()["data"]
    assert detail["post"]["id"] == created["post"]["id"]
    assert detail["author"]["id"] == alice_id


def test_feed_lists_newest_first_with_authors(client):
    _, alice_token = _register(client, "alice@campus.edu", "Alice")
    bob_id, bob_token = _register(client, "bob@campus.edu", "Bob")
    first = _publish(client, alice_token, "Anyone up for study group?")
    second = _publish(client, bob_token, "Lost my calculator in room 204")

    feed = client.get("/v1/posts", headers=_auth_headers(alice_token)).json()["data"]["posts"]
    assert [entry["post"]["id"] for entry in feed] == [second["post"]["id"], first["post"]["id"]]
    assert [entry["author"]["full_name"] for entry in feed] == ["Bob", "Alice"]
    assert feed[1]["post"]["image_url"] is None

    mine = client.get("/v1/posts", params={"user_id": bob_id}, headers=_auth_headers(alice_token)).json()["data"]
    assert [entry["post"]["user_id"] for entry in mine["posts"]] == [bob_id]

    limited = client.get("/v1/posts", params={"limit": 1}, headers=_auth_headers(alice_token)).json()["data"]
    assert len(limited["posts"]) == 1


def test_feed_requires_authentication(client):
    response = client.get("/v1/posts")
    assert response.status_code == 401


def test_blank_post_is_rejected(client):
    _, token = _register(client, "alice@campus.edu", "Alice")

    response = client.post("/v1/posts", json={"content": "   "}, headers=_auth_headers(token))
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_only_author_or_admin_can_delete_post(client):
    _, alice_token = _register(client, "alice@campus.edu", "Alice")
    moderator_id, moderator_token = _register(client, "mod@campus.edu", "Moderator")
    _, bob_token = _register(client, "bob@campus.edu", "Bob")
    kept = _publish(client, alice_token, "Free pizza in the quad")
    removed = _publish(client, alice_token, "Buy cheap essays here")

    assert client.delete(f"/v1/posts/{kept['post']['id']}", headers=_auth_headers(bob_token)).status_code == 403
    assert client.delete(f"/v1/posts/{kept['post']['id']}", headers=_auth_headers(alice_token)).status_code == 200
    assert client.get(f"/v1/posts/{kept['post']['id']}", headers=_auth_headers(alice_token)).status_code == 404

    with db_session.open_session() as db:
        db.execute(update(Profile).where(Profile.id == moderator_id).values(is_admin=True))
        db.commit()
    assert client.delete(f"/v1/posts/{removed['post']['id']}", headers=_auth_headers(moderator_token)).status_code == 200
    missing = client.get(f"/v1/posts/{removed['post']['id']}", headers=_auth_headers(alice_token))
    assert missing.json()["error"]["code"] == "post_not_found"


def test_new_posts_are_pushed_to_subscribers(client):
    _, alice_token = _register(client, "alice@campus.edu", "Alice")
    _, bob_token = _register(client, "bob@campus.edu", "Bob")

    with client.websocket_connect(f"/v1/ws?access_token={bob_token}") as websocket:
        assert websocket.receive_json()["type"] == "connection.welcome"
        websocket.send_json({"op": "subscribe", "tables": ["posts"]})
        assert websocket.receive_json()["type"] == "ack"

        created = _publish(client, alice_token, "Textbook swap on Friday")

        change = websocket.receive_json()
        assert (change["table"], change["op"]) == ("posts", "INSERT")
        assert change["row"]["id"] == created["post"]["id"]
