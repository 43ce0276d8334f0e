import pytest

from conftest import import_chat


def _log(count=30, hit_every=10):
    rows = []
    for index in range(count):
        sender = "Alice" if index % 2 == 0 else "Bob"
        content = f"needle {index}" if index % hit_every == 0 else f"message {index}"
        rows.append((sender, index * 60, content))
    return rows


@pytest.mark.anyio
async def test_filter_with_context_blocks(client):
    collection_id = await import_chat(client, _log())

    response = await client.post(
        f"/api/collections/{collection_id}/filter",
        json={"keywords": ["NEEDLE"], "context_size": 2},
    )
    assert response.status_code == 200
    data = response.json()

    assert data["pagination"]["total_blocks"] == 3
    assert data["pagination"]["total_hits"] == 3
    assert data["pagination"]["has_more"] is False
    first = data["blocks"][0]
    assert [message["content"] for message in first["messages"]] == [
        "needle 0",
        "message 1",
        "message 2",
    ]
    assert [message["is_hit"] for message in first["messages"]] == [True, False, False]
    assert data["blocks"][1]["hit_count"] == 1
    assert len(data["blocks"][1]["messages"]) == 5
    assert data["stats"] == {
        "total_messages": 13,
        "hit_messages": 3,
        "total_chars": sum(
            len(message["content"]) for block in data["blocks"] for message in block["messages"]
        ),
        "estimated": False,
    }


@pytest.mark.anyio
async def test_pagination_covers_every_block(client):
    collection_id = await import_chat(client, _log(count=50, hit_every=5))
    url = f"/api/collections/{collection_id}/filter"

    seen_hits = 0
    page = 1
    while True:
        response = await client.post(
            url, json={"keywords": ["needle"], "context_size": 1, "page": page, "page_size": 3}
        )
        data = response.json()
        seen_hits += sum(block["hit_count"] for block in data["blocks"])
        if page == 1:
            assert data["stats"]["estimated"] is True
            # 8 messages over the first 3 of 10 blocks
            assert data["stats"]["total_messages"] == 27
        else:
            assert data["stats"]["total_messages"] == 0
        assert data["stats"]["hit_messages"] == 10
        if not data["pagination"]["has_more"]:
            break
        page += 1

    assert seen_hits == 10
    assert page == 4


@pytest.mark.anyio
async def test_sender_filter_and_no_hits(client):
    collection_id = await import_chat(client, _log(count=6))
    members = (await client.get(f"/api/collections/{collection_id}/members")).json()
    bob = next(item for item in members if item["display_name"] == "Bob")
    url = f"/api/collections/{collection_id}/filter"

    response = await client.post(url, json={"sender_ids": [bob["id"]], "context_size": 0})
    data = response.json()
    assert data["pagination"]["total_hits"] == 3
    assert all(block["messages"][0]["sender_name"] == "Bob" for block in data["blocks"])

    response = await client.post(url, json={"keywords": ["absent"]})
    data = response.json()
    assert data["blocks"] == []
    assert data["pagination"]["total_blocks"] == 0


@pytest.mark.anyio
async def test_reply_resolution(client):
    payload = {
        "name": "Replies",
        "members": [
            {"platform_id": "u1", "display_name": "Alice"},
            {"platform_id": "u2", "display_name": "Bob"},
        ],
        "messages": [
            {"sender_platform_id": "u1", "ts": 1000, "content": "question?", "platform_message_id": "p1"},
            {
                "sender_platform_id": "u2",
                "ts": 1010,
                "content": "answer",
                "platform_message_id": "p2",
                "reply_to_message_id": "p1",
            },
        ],
    }
    response = await client.post("/api/collections", json=payload)
    collection_id = response.json()["collection"]["id"]

    response = await client.post(
        f"/api/collections/{collection_id}/filter", json={"keywords": ["answer"]}
    )
    messages = response.json()["blocks"][0]["messages"]
    assert len(messages) == 2
    assert messages[1]["reply_to_content"] == "question?"
    assert messages[1]["reply_to_sender_name"] == "Alice"
    assert messages[0]["reply_to_content"] is None


@pytest.mark.anyio
async def test_sessions_context(client):
    rows = [("Alice", 0, "a"), ("Bob", 10, "b"), ("Alice", 5000, "c")]
    collection_id = await import_chat(client, rows)
    await client.post(f"/api/collections/{collection_id}/sessions/generate")
    sessions = (await client.get(f"/api/collections/{collection_id}/sessions")).json()

    response = await client.post(
        f"/api/collections/{collection_id}/filter/sessions",
        json={"session_ids": [sessions[1]["id"], sessions[0]["id"]]},
    )
    data = response.json()
    assert [len(block["messages"]) for block in data["blocks"]] == [2, 1]
    assert all(block["hit_count"] == 0 for block in data["blocks"])
    assert data["pagination"]["total_blocks"] == 2
    assert data["stats"]["total_messages"] == 3
