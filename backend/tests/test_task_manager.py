import asyncio

import pytest

from conftest import RecordingWebSocketManager
from chatlens.services.task_manager import TaskManager, TaskSupersededError


@pytest.mark.anyio
async def test_job_result_is_broadcast():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)

    async def job(report, token):
        await report({"percentage": 50})
        return {"count": 3}

    generation = await manager.submit("c1", "sessions", job)
    await manager.wait("c1", "sessions")

    assert generation == 1
    assert ws.of("task_progress")[0]["percentage"] == 50
    done = ws.of("task_done")
    assert done == [{"event": "task_done", "kind": "sessions", "generation": 1, "result": {"count": 3}}]


@pytest.mark.anyio
async def test_progress_percentage_never_decreases():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)

    async def job(report, token):
        for value in (10, 40, 30, 90):
            await report({"percentage": value})

    await manager.submit("c1", "export", job)
    await manager.wait("c1", "export")

    assert [event["percentage"] for event in ws.of("task_progress")] == [10, 40, 40, 90]


@pytest.mark.anyio
async def test_newer_submission_supersedes_previous():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(report, token):
        started.set()
        await release.wait()
        await report({"percentage": 99})
        token.raise_if_cancelled()
        return "stale"

    async def fast(report, token):
        return "fresh"

    await manager.submit("c1", "sessions", slow)
    await started.wait()
    second = await manager.submit("c1", "sessions", fast)
    release.set()
    await manager.wait("c1", "sessions")
    await asyncio.sleep(0.05)

    assert manager.current_generation("c1", "sessions") == second == 2
    assert [event["result"] for event in ws.of("task_done")] == ["fresh"]
    assert ws.of("task_progress") == []


@pytest.mark.anyio
async def test_keys_are_independent():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)

    async def job(report, token):
        return token.generation

    await manager.submit("c1", "sessions", job)
    await manager.submit("c2", "sessions", job)
    await manager.submit("c1", "export", job)
    for key in (("c1", "sessions"), ("c2", "sessions"), ("c1", "export")):
        await manager.wait(*key)

    assert sorted(event["result"] for event in ws.of("task_done")) == [1, 1, 1]


@pytest.mark.anyio
async def test_failed_job_broadcasts_error():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)

    async def job(report, token):
        raise ValueError("boom")

    await manager.submit("c1", "export", job)
    await manager.wait("c1", "export")

    errors = ws.of("task_error")
    assert len(errors) == 1
    assert errors[0]["code"] == "TASK_FAILED"
    assert errors[0]["message"] == "boom"
    assert not await manager.is_running("c1", "export")


@pytest.mark.anyio
async def test_superseded_error_is_silent():
    ws = RecordingWebSocketManager()
    manager = TaskManager(ws)

    async def job(report, token):
        raise TaskSupersededError()

    await manager.submit("c1", "export", job)
    await manager.wait("c1", "export")

    assert ws.events == []
