from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import Request

from chatlens.api.websocket import WebSocketManager

logger = logging.getLogger(__name__)

TASK_KIND_SESSIONS = "sessions"
TASK_KIND_EXPORT = "export"

ProgressReporter = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class TaskSupersededError(RuntimeError):
    """Raised inside a job whose generation is no longer current."""

    code: str = "TASK_SUPERSEDED"
    message: str = "A newer task replaced this one"


@dataclass
class CancelToken:
    """Cooperative cancellation flag checked at loop boundaries."""

    generation: int = 0
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TaskSupersededError()


Job = Callable[[ProgressReporter, CancelToken], Awaitable[Any]]


@dataclass
class TaskHandle:
    """Track a background task and its cancellation token."""

    task: asyncio.Task
    token: CancelToken


class TaskManager:
    """Run one background job per ``(collection_id, kind)``.

    Submitting again bumps the generation and cancels the previous token;
    the superseded job's progress and result are discarded.
    """

    def __init__(self, ws_manager: WebSocketManager) -> None:
        self._ws_manager = ws_manager
        self._handles: dict[tuple[str, str], TaskHandle] = {}
        self._generations: dict[tuple[str, str], int] = {}
        self._handles_lock = asyncio.Lock()

    async def submit(self, collection_id: str, kind: str, job: Job) -> int:
        """Start ``job`` in the background and return its generation."""

        key = (collection_id, kind)
        async with self._handles_lock:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            previous = self._handles.get(key)
            if previous and not previous.task.done():
                previous.token.cancel()
                logger.info(
                    "Superseding %s task for collection %s (generation %s)",
                    kind,
                    collection_id,
                    generation - 1,
                )
            token = CancelToken(generation=generation)
            task = asyncio.create_task(self._run(collection_id, kind, job, token))
            self._handles[key] = TaskHandle(task=task, token=token)
        return generation

    def current_generation(self, collection_id: str, kind: str) -> int:
        return self._generations.get((collection_id, kind), 0)

    async def is_running(self, collection_id: str, kind: str) -> bool:
        async with self._handles_lock:
            handle = self._handles.get((collection_id, kind))
            return bool(handle and not handle.task.done())

    async def wait(self, collection_id: str, kind: str) -> None:
        """Wait for the current task of a key to finish."""

        async with self._handles_lock:
            handle = self._handles.get((collection_id, kind))
        if handle:
            await asyncio.gather(handle.task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all active tasks."""

        async with self._handles_lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.token.cancel()
            handle.task.cancel()
        await asyncio.gather(*(handle.task for handle in handles), return_exceptions=True)

    def _is_current(self, collection_id: str, kind: str, generation: int) -> bool:
        return self._generations.get((collection_id, kind)) == generation

    async def _run(self, collection_id: str, kind: str, job: Job, token: CancelToken) -> None:
        generation = token.generation
        last_percentage = 0.0

        async def report(payload: dict[str, Any]) -> None:
            nonlocal last_percentage
            if token.cancelled or not self._is_current(collection_id, kind, generation):
                return
            event = dict(payload)
            if "percentage" in event:
                last_percentage = max(last_percentage, float(event["percentage"]))
                event["percentage"] = last_percentage
            event.update({"event": "task_progress", "kind": kind, "generation": generation})
            await self._ws_manager.broadcast(collection_id, event)

        try:
            result = await job(report, token)
        except TaskSupersededError:
            logger.info("Discarded superseded %s task generation %s", kind, generation)
            return
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            if not self._is_current(collection_id, kind, generation):
                logger.info("Discarded failed %s task generation %s: %s", kind, generation, exc)
                return
            logger.exception("Background %s task failed for collection %s", kind, collection_id)
            await self._ws_manager.broadcast(
                collection_id,
                {
                    "event": "task_error",
                    "kind": kind,
                    "generation": generation,
                    "code": getattr(exc, "code", "TASK_FAILED"),
                    "message": getattr(exc, "message", str(exc)),
                },
            )
            return

        if token.cancelled or not self._is_current(collection_id, kind, generation):
            return
        await self._ws_manager.broadcast(
            collection_id,
            {"event": "task_done", "kind": kind, "generation": generation, "result": result},
        )


def get_task_manager(request: Request) -> TaskManager:
    """Dependency to access the app task manager."""

    return request.app.state.task_manager
