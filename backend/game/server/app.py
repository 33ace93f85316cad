from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from game.messaging.router import ChannelRouter
from game.server.settings import SyncServerSettings
from game.server.websocket import websocket_endpoint
from game.sync.memory import DocumentStore, InMemorySyncChannel
from game.sync.protocol import GAMES_ROOT
from lobby.rooms.listing import list_public_rooms
from lobby.rooms.reaper import SessionReaper
from shared.logging import setup_logging
from shared.storage import LocalSnapshotStorage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

    from shared.storage import SnapshotStorage

logger = structlog.get_logger()

_MAX_SEARCH_LENGTH = 64


async def health(request: Request) -> JSONResponse:
    store: DocumentStore = request.app.state.store
    router: ChannelRouter = request.app.state.router
    return JSONResponse(
        {
            "status": "ok",
            "sessions": len(store.children(GAMES_ROOT)),
            "connections": router.connection_count,
        },
    )


async def rooms(request: Request) -> JSONResponse:
    store: DocumentStore = request.app.state.store
    search = request.query_params.get("q")
    if search is not None and len(search) > _MAX_SEARCH_LENGTH:
        return JSONResponse({"error": "Search query too long"}, status_code=400)
    summaries = list_public_rooms(store.children(GAMES_ROOT), search=search)
    return JSONResponse({"rooms": [room.model_dump(mode="json", by_alias=True) for room in summaries]})


def create_app(
    settings: SyncServerSettings | None = None,
    store: DocumentStore | None = None,
    storage: SnapshotStorage | None = None,
    reaper: SessionReaper | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = SyncServerSettings()

    if store is None:
        store = DocumentStore()

    if storage is None and settings.snapshot_path:
        storage = LocalSnapshotStorage(settings.snapshot_path)

    if reaper is None:
        reaper = SessionReaper(
            InMemorySyncChannel(store, client_id="session-reaper"),
            session_ttl_seconds=settings.session_ttl_seconds,
            terminated_ttl_seconds=settings.terminated_ttl_seconds,
            interval_seconds=settings.reaper_interval_seconds,
        )

    router = ChannelRouter(store)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, router, max_decode_errors=settings.max_decode_errors)

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        if storage is not None:
            # a corrupt snapshot aborts startup rather than being overwritten on shutdown
            store.load(storage.load())
        reaper.start()
        logger.info("sync server ready")
        try:
            yield
        finally:
            await reaper.stop()
            if storage is not None:
                storage.save(store.dump())

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/rooms", rooms, methods=["GET"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.router = router
    app.state.reaper = reaper
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = SyncServerSettings()
    setup_logging(settings.log_dir)
    return create_app(settings=settings)
