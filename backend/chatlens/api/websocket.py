from __future__ import annotations

import asyncio
from typing import AsyncIterator

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.repos.chat_session_repo import ChatSessionRepo
from chatlens.repos.collection_repo import CollectionRepo

router = APIRouter()


class WebSocketManager:
    """Manage active WebSocket connections per collection."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, collection_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(collection_id, set()).add(websocket)

    async def disconnect(self, collection_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            connections = self._connections.get(collection_id)
            if not connections:
                return
            connections.discard(websocket)
            if not connections:
                self._connections.pop(collection_id, None)

    async def broadcast(self, collection_id: str, payload: dict) -> None:
        async with self._lock:
            connections = list(self._connections.get(collection_id, set()))
        if not connections:
            return
        stale: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_json(payload)
            except Exception:  # noqa: BLE001
                stale.append(websocket)
        for websocket in stale:
            await self.disconnect(collection_id, websocket)


def get_ws_manager(websocket: WebSocket) -> WebSocketManager:
    """Dependency to access the WebSocket manager from app state."""

    return websocket.app.state.ws_manager


async def get_ws_db(websocket: WebSocket) -> AsyncIterator[AsyncSession]:
    """Provide a database session for WebSocket handlers."""

    sessionmaker: async_sessionmaker[AsyncSession] = websocket.app.state.sessionmaker
    async with sessionmaker() as session:
        yield session


@router.websocket("/ws/{collection_id}")
async def ws_collection(
    websocket: WebSocket,
    collection_id: str,
    db: AsyncSession = Depends(get_ws_db),
    manager: WebSocketManager = Depends(get_ws_manager),
) -> None:
    """WebSocket endpoint for background task progress of a collection."""

    await manager.connect(collection_id, websocket)
    collection = await CollectionRepo(db).get_collection(collection_id)
    if collection:
        session_count = await ChatSessionRepo(db).count(collection_id)
        await websocket.send_json(
            {
                "event": "collection_state",
                "collection_id": collection_id,
                "session_count": session_count,
                "has_index": session_count > 0,
            }
        )
    await db.close()
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await manager.disconnect(collection_id, websocket)
