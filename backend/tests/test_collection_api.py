import pytest

from conftest import BASE_TS, chat_payload, import_chat
from chatlens.services import collection_service
from chatlens.utils.time_utils import to_epoch_seconds


@pytest.mark.anyio
async def test_import_and_read_collection(client):
    payload = chat_payload([("Alice", 0, "hi"), ("Bob", 10, "hello"), ("Alice", 20, "bye")])
    payload["members"][0]["aliases"] = ["Al"]
    payload["members"][0]["history_names"] = ["OldAlice"]
    response = await client.post("/api/collections", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["member_count"] == 2
    assert data["message_count"] == 3
    collection_id = data["collection"]["id"]

    detail = await client.get(f"/api/collections/{collection_id}")
    assert detail.status_code == 200
    assert detail.json()["name"] == "Test Chat"

    listing = await client.get("/api/collections")
    assert [item["id"] for item in listing.json()] == [collection_id]

    members = (await client.get(f"/api/collections/{collection_id}/members")).json()
    by_name = {member["display_name"]: member for member in members}
    assert by_name["Alice"]["message_count"] == 2
    assert by_name["Alice"]["aliases"] == ["Al"]
    assert by_name["Alice"]["history_names"] == ["OldAlice"]
    assert by_name["Bob"]["message_count"] == 1


@pytest.mark.anyio
async def test_millisecond_timestamps_are_normalized(client):
    payload = chat_payload([("Alice", 0, "hi")])
    payload["messages"][0]["ts"] = BASE_TS * 1000
    response = await client.post("/api/collections", json=payload)
    collection_id = response.json()["collection"]["id"]

    result = await client.post(
        f"/api/collections/{collection_id}/filter", json={"keywords": ["hi"]}
    )
    assert result.json()["blocks"][0]["messages"][0]["timestamp"] == BASE_TS


@pytest.mark.anyio
async def test_unknown_collection_returns_404(client):
    assert (await client.get("/api/collections/missing")).status_code == 404
    assert (await client.get("/api/collections/missing/members")).status_code == 404


@pytest.mark.anyio
async def test_unknown_sender_is_rejected(client):
    payload = chat_payload([("Alice", 0, "hi")])
    payload["messages"][0]["sender_platform_id"] = "uid-Nobody"
    response = await client.post("/api/collections", json=payload)
    assert response.status_code == 400

    assert (await client.get("/api/collections")).json() == []


@pytest.mark.anyio
async def test_duplicate_member_is_rejected(client):
    payload = chat_payload([("Alice", 0, "hi")], members=["Alice", "Alice"])
    response = await client.post("/api/collections", json=payload)
    assert response.status_code == 400


@pytest.mark.anyio
async def test_display_name_falls_back_to_account_name(client):
    payload = chat_payload([("Alice", 0, "hi")])
    payload["members"][0]["display_name"] = None
    payload["members"][0]["account_name"] = "alice_acc"
    collection_id = (await client.post("/api/collections", json=payload)).json()["collection"]["id"]

    members = (await client.get(f"/api/collections/{collection_id}/members")).json()
    assert members[0]["display_name"] == "alice_acc"


@pytest.mark.anyio
async def test_import_chat_helper_creates_collection(client):
    collection_id = await import_chat(client, [("Alice", 0, "hi")], name="Second")
    assert (await client.get(f"/api/collections/{collection_id}")).json()["name"] == "Second"


@pytest.mark.anyio
async def test_timestamps_are_converted_once_at_import(client, monkeypatch):
    calls = []

    def counting(value):
        calls.append(value)
        return to_epoch_seconds(value)

    monkeypatch.setattr(collection_service, "to_epoch_seconds", counting)
    payload = chat_payload([("Alice", 0, "hi"), ("Bob", 5, "yo")])
    response = await client.post("/api/collections", json=payload)

    assert response.status_code == 201
    assert calls == [BASE_TS, BASE_TS + 5]
