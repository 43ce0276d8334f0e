import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from chatlens.core.config import get_settings
from chatlens.db.base import init_db
from chatlens.main import create_app

BASE_TS = 1_700_000_000


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_chatlens.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setenv("SESSION_PROGRESS_EVERY", "1")
    get_settings.cache_clear()
    app = create_app()
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.task_manager.shutdown()
    await app.state.engine.dispose()


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingWebSocketManager:
    """Stand-in for the WebSocket manager that keeps every broadcast."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def broadcast(self, collection_id: str, payload: dict) -> None:
        self.events.append((collection_id, payload))

    def of(self, event: str) -> list[dict]:
        return [payload for _, payload in self.events if payload.get("event") == event]


def chat_payload(messages, members=None, name="Test Chat"):
    """Build an import payload from ``(sender, offset_seconds, content)`` tuples."""

    senders = members or sorted({sender for sender, _, _ in messages})
    return {
        "name": name,
        "platform": "generic",
        "members": [
            {"platform_id": f"uid-{sender}", "display_name": sender} for sender in senders
        ],
        "messages": [
            {
                "sender_platform_id": f"uid-{sender}",
                "ts": BASE_TS + offset,
                "content": content,
                "platform_message_id": f"m{index}",
            }
            for index, (sender, offset, content) in enumerate(messages)
        ],
    }


async def import_chat(client, messages, members=None, name="Test Chat") -> str:
    response = await client.post(
        "/api/collections", json=chat_payload(messages, members=members, name=name)
    )
    assert response.status_code == 201, response.text
    return response.json()["collection"]["id"]
