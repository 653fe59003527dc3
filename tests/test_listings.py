from __future__ import annotations


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


def _create_listing(client, token: str, title: str, category: str = "Textbooks") -> dict[str, object]:
    response = client.post(
        "/v1/listings",
        json={"title": title, "price": "25.00", "category": category, "condition": "Like New"},
        headers=_auth_headers(token),
    )
    assert response.status_code == 201
    return response.json()["data"]


def test_create_and_browse_listings(client):
    alice_id, token = _register(client, "alice@campus.edu", "Alice")
    _create_listing(client, token, "Calculus 101")
    _create_listing(client, token, "Desk Chair", category="Furniture")

    all_rows = client.get("/v1/listings").json()["data"]["listings"]
    assert {row["title"] for row in all_rows} == {"Calculus 101", "Desk Chair"}
    assert all(row["status"] == "active" and row["user_id"] == alice_id for row in all_rows)

    furniture = client.get("/v1/listings", params={"category": "Furniture"}).json()["data"]["listings"]
    assert [row["title"] for row in furniture] == ["Desk Chair"]

    searched = client.get("/v1/listings", params={"search": "calc"}).json()["data"]["listings"]
    assert [row["title"] for row in searched] == ["Calculus 101"]


def test_listing_rejects_unknown_category(client):
    _, token = _register(client, "alice@campus.edu", "Alice")

    response = client.post(
        "/v1/listings",
        json={"title": "Mystery", "category": "Spaceships", "condition": "New"},
        headers=_auth_headers(token),
    )
    assert response.status_code == 422


def test_only_seller_can_edit_listing(client):
    _, alice_token = _register(client, "alice@campus.edu", "Alice")
    _, bob_token = _register(client, "bob@campus.edu", "Bob")
    listing = _create_listing(client, alice_token, "Lamp")

    by_bob = client.patch(f"/v1/listings/{listing['id']}", json={"price": "1.00"}, headers=_auth_headers(bob_token))
    assert by_bob.status_code == 403
    assert by_bob.json()["error"]["code"] == "forbidden"

    by_alice = client.patch(
        f"/v1/listings/{listing['id']}",
        json={"price": "20.00", "status": "reserved"},
        headers=_auth_headers(alice_token),
    )
    assert by_alice.status_code == 200
    assert by_alice.json()["data"]["price"] == 20.0
    assert by_alice.json()["data"]["status"] == "reserved"


def test_listing_detail_includes_images_and_seller(client):
    alice_id, token = _register(client, "alice@campus.edu", "Alice")
    listing = _create_listing(client, token, "Bike")

    image = client.post(
        f"/v1/listings/{listing['id']}/images",
        json={"url": "https://cdn.example.edu/bike.jpg"},
        headers=_auth_headers(token),
    )
    assert image.status_code == 201

    detail = client.get(f"/v1/listings/{listing['id']}").json()["data"]
    assert detail["listing"]["title"] == "Bike"
    assert [row["url"] for row in detail["images"]] == ["https://cdn.example.edu/bike.jpg"]
    assert detail["seller"]["id"] == alice_id

    missing = client.get("/v1/listings/missing")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "listing_not_found"


def test_complete_transaction_marks_listing_sold(client):
    alice_id, alice_token = _register(client, "alice@campus.edu", "Alice")
    bob_id, bob_token = _register(client, "bob@campus.edu", "Bob")
    listing = _create_listing(client, alice_token, "Monitor")

    before = client.get(f"/v1/listings/{listing['id']}/transaction", headers=_auth_headers(bob_token))
    assert before.json()["data"] is None

    by_buyer = client.post(
        f"/v1/listings/{listing['id']}/complete",
        json={"buyer_id": bob_id},
        headers=_auth_headers(bob_token),
    )
    assert by_buyer.status_code == 403

    completed = client.post(
        f"/v1/listings/{listing['id']}/complete",
        json={"buyer_id": bob_id},
        headers=_auth_headers(alice_token),
    )
    assert completed.status_code == 200
    transaction = completed.json()["data"]
    assert transaction["buyer_id"] == bob_id
    assert transaction["seller_id"] == alice_id
    assert transaction["status"] == "completed"

    detail = client.get(f"/v1/listings/{listing['id']}").json()["data"]
    assert detail["listing"]["status"] == "sold"


def test_seller_can_delete_listing(client):
    _, token = _register(client, "alice@campus.edu", "Alice")
    listing = _create_listing(client, token, "Old Notes")

    response = client.delete(f"/v1/listings/{listing['id']}", headers=_auth_headers(token))
    assert response.status_code == 200
    assert client.get(f"/v1/listings/{listing['id']}").status_code == 404
