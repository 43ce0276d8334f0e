import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import import_chat
from chatlens.repos.chat_session_repo import ChatSessionRepo
from chatlens.services.session_index_service import SessionIndexError
from chatlens.services.task_manager import CancelToken

EXAMPLE = [
    ("Alice", 0, "@Bob hi"),
    ("Bob", 30, "@Alice yo"),
    ("Carol", 4000, "hello"),
]


@pytest.mark.anyio
async def test_generate_and_list_sessions(client):
    collection_id = await import_chat(client, EXAMPLE)

    response = await client.post(f"/api/collections/{collection_id}/sessions/generate")
    assert response.status_code == 200
    assert response.json()["session_count"] == 2

    response = await client.get(f"/api/collections/{collection_id}/sessions")
    assert response.status_code == 200
    sessions = response.json()
    assert [item["message_count"] for item in sessions] == [2, 1]
    assert sessions[1]["start_ts"] - sessions[0]["end_ts"] > 1800
    assert sessions[0]["first_message_id"] < sessions[1]["first_message_id"]

    response = await client.get(f"/api/collections/{collection_id}/sessions/stats")
    assert response.json() == {"session_count": 2, "has_index": True, "gap_threshold": 1800}


@pytest.mark.anyio
async def test_regenerate_replaces_index(client):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"

    await client.post(f"{base}/generate")
    response = await client.post(f"{base}/generate", json={"gap_threshold": 10})
    assert response.json()["session_count"] == 3

    response = await client.put(f"{base}/gap-threshold", json={"gap_threshold": 5000})
    assert response.json()["gap_threshold"] == 5000
    response = await client.post(f"{base}/generate")
    assert response.json()["session_count"] == 1

    response = await client.get(base)
    assert len(response.json()) == 1

    response = await client.put(f"{base}/gap-threshold", json={"gap_threshold": None})
    assert response.json()["gap_threshold"] == 1800


@pytest.mark.anyio
async def test_clear_and_unknown_collection(client):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"
    await client.post(f"{base}/generate")

    response = await client.delete(base)
    assert response.status_code == 204
    response = await client.get(f"{base}/stats")
    assert response.json()["has_index"] is False

    response = await client.post("/api/collections/missing/sessions/generate")
    assert response.status_code == 404
    response = await client.get("/api/collections/missing/sessions")
    assert response.json() == []


@pytest.mark.anyio
async def test_empty_collection_generates_zero_sessions(client):
    collection_id = await import_chat(client, [], members=["Alice"])

    response = await client.post(f"/api/collections/{collection_id}/sessions/generate")
    assert response.json()["session_count"] == 0


@pytest.mark.anyio
async def test_summary_search_and_messages(client):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"
    await client.post(f"{base}/generate")
    sessions = (await client.get(base)).json()
    first_id = sessions[0]["id"]

    response = await client.put(f"{base}/{first_id}/summary", json={"summary": "  greetings  "})
    assert response.json()["summary"] == "greetings"
    response = await client.get(f"{base}/{first_id}/summary")
    assert response.json()["summary"] == "greetings"
    response = await client.get(f"{base}/99999/summary")
    assert response.status_code == 404

    response = await client.get(f"{base}/search", params={"keywords": ["HELLO"]})
    results = response.json()
    assert [item["id"] for item in results] == [sessions[1]["id"]]
    assert results[0]["is_complete"] is True
    assert results[0]["preview_messages"][0]["sender_name"] == "Carol"

    response = await client.get(f"{base}/search", params={"preview_count": 1})
    results = response.json()
    assert [item["id"] for item in results] == [sessions[1]["id"], first_id]
    assert results[1]["is_complete"] is False

    response = await client.get(f"{base}/{first_id}/messages")
    data = response.json()
    assert data["returned_count"] == 2
    assert data["participants"] == ["Alice", "Bob"]
    assert data["messages"][0]["content"] == "@Bob hi"


@pytest.mark.anyio
async def test_generate_async_reports_progress(app, client):
    collection_id = await import_chat(client, EXAMPLE)
    events = []

    async def capture(target, payload):
        events.append(payload)

    app.state.ws_manager.broadcast = capture

    response = await client.post(f"/api/collections/{collection_id}/sessions/generate-async")
    assert response.status_code == 202
    generation = response.json()["generation"]
    await app.state.task_manager.wait(collection_id, "sessions")

    done = [event for event in events if event["event"] == "task_done"]
    assert done and done[-1]["generation"] == generation
    assert done[-1]["result"] == {"session_count": 2}
    percentages = [event["percentage"] for event in events if event["event"] == "task_progress"]
    assert percentages == sorted(percentages)
    assert percentages[-1] == 100


@pytest.mark.anyio
async def test_failed_regeneration_keeps_previous_index(client, monkeypatch):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"
    await client.post(f"{base}/generate")
    before = (await client.get(base)).json()
    assert len(before) == 2

    original = ChatSessionRepo.insert_session
    calls = {"count": 0}

    async def failing_insert(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(ChatSessionRepo, "insert_session", failing_insert)
    response = await client.post(f"{base}/generate", json={"gap_threshold": 10})
    assert response.status_code == 500

    after = (await client.get(base)).json()
    assert after == before


@pytest.mark.anyio
async def test_cancelled_regeneration_keeps_previous_index(app, client, monkeypatch):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"
    await client.post(f"{base}/generate", json={"gap_threshold": 10})
    before = (await client.get(base)).json()
    assert len(before) == 3

    original = ChatSessionRepo.insert_session
    token = CancelToken(generation=1)

    async def cancelling_insert(self, *args, **kwargs):
        token.cancel()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(ChatSessionRepo, "insert_session", cancelling_insert)
    with pytest.raises(SessionIndexError) as excinfo:
        await app.state.session_index_service.generate_sessions(
            collection_id, gap_threshold=5000, cancel_token=token
        )
    assert excinfo.value.code == "TASK_SUPERSEDED"

    assert (await client.get(base)).json() == before


@pytest.mark.anyio
async def test_superseded_async_regeneration_is_discarded(app, client, monkeypatch):
    collection_id = await import_chat(client, EXAMPLE)
    base = f"/api/collections/{collection_id}/sessions"
    await client.post(f"{base}/generate", json={"gap_threshold": 10})
    events = []

    async def capture(target, payload):
        events.append(payload)

    app.state.ws_manager.broadcast = capture

    original = ChatSessionRepo.insert_session
    entered = asyncio.Event()
    release = asyncio.Event()
    gate = {"held": False}

    async def gated_insert(self, *args, **kwargs):
        if not gate["held"]:
            gate["held"] = True
            entered.set()
            await release.wait()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(ChatSessionRepo, "insert_session", gated_insert)
    first = await client.post(f"{base}/generate-async", json={"gap_threshold": 5000})
    await entered.wait()
    second = await client.post(f"{base}/generate-async", json={"gap_threshold": 10})
    release.set()
    await app.state.task_manager.wait(collection_id, "sessions")

    assert second.json()["generation"] == first.json()["generation"] + 1
    done = [event for event in events if event["event"] == "task_done"]
    assert [event["generation"] for event in done] == [second.json()["generation"]]
    assert done[0]["result"] == {"session_count": 3}
    assert not [event for event in events if event["event"] == "task_error"]
    assert len((await client.get(base)).json()) == 3
