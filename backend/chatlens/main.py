from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatlens.api import collection as collection_api
from chatlens.api import filter as filter_api
from chatlens.api import session_index as session_index_api
from chatlens.api import social as social_api
from chatlens.api import websocket as websocket_api
from chatlens.core.config import get_settings
from chatlens.core.logging import setup_logging
from chatlens.db.base import create_engine, create_sessionmaker, init_db
from chatlens.services.collection_service import CollectionService
from chatlens.services.export_service import ExportService
from chatlens.services.filter_service import FilterService
from chatlens.services.session_index_service import SessionIndexService
from chatlens.services.social_service import SocialService
from chatlens.services.task_manager import TaskManager


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_content_max_chars)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        yield
        await app.state.task_manager.shutdown()
        await engine.dispose()

    app = FastAPI(title="chatlens", lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.settings = settings
    app.state.ws_manager = websocket_api.WebSocketManager()
    app.state.task_manager = TaskManager(app.state.ws_manager)
    app.state.collection_service = CollectionService(sessionmaker)
    app.state.session_index_service = SessionIndexService(sessionmaker, settings)
    app.state.social_service = SocialService(sessionmaker, settings)
    app.state.filter_service = FilterService(sessionmaker, settings)
    app.state.export_service = ExportService(sessionmaker, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(collection_api.router)
    app.include_router(session_index_api.router)
    app.include_router(social_api.router)
    app.include_router(filter_api.router)
    app.include_router(websocket_api.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("chatlens.main:app", host=_settings.app_host, port=_settings.app_port)
