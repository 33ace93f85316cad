"""Integration tests for the sync server's WebSocket and HTTP endpoints.

These run the Starlette app through the test client: MessagePack frames over
a real WebSocket route, the health and room listing endpoints, and snapshot
persistence across restarts.
"""

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from game.logic.enums import GameMode, Symbol
from game.messaging.types import ChannelErrorCode
from game.server.app import create_app
from game.server.settings import SyncServerSettings
from game.tests.helpers.records import make_record
from game.tests.helpers.websocket import recv_until, recv_ws, request, send_ws
from shared.storage import LocalSnapshotStorage


@pytest.fixture
def settings():
    return SyncServerSettings(cors_origins=["http://localhost:5173"], snapshot_path=None, max_decode_errors=3)


@pytest.fixture
def client(settings, store):
    with TestClient(create_app(settings=settings, store=store)) as client:
        yield client


class TestHttpEndpoints:
    def test_health(self, client, store):
        store.write("games/ABC123", make_record().to_document())

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "sessions": 1, "connections": 0}

    def test_rooms_lists_open_online_sessions(self, client, store):
        store.write("games/OLD001", make_record("OLD001", o=None, mode=GameMode.ONLINE, is_public=True).to_document())
        store.write(
            "games/NEW001",
            make_record("NEW001", x=None, o="Dana", mode=GameMode.ONLINE, is_public=True, created_at=2).to_document(),
        )
        store.write("games/FULL01", make_record("FULL01", mode=GameMode.ONLINE, is_public=True).to_document())
        store.write("games/PRIV01", make_record("PRIV01", o=None).to_document())

        response = client.get("/rooms")

        assert response.status_code == 200
        rooms = response.json()["rooms"]
        assert [room["key"] for room in rooms] == ["OLD001", "NEW001"]
        assert rooms[1] == {"key": "NEW001", "hostName": "Dana", "openSeat": Symbol.X.value, "createdAt": 2}

    def test_rooms_search(self, client, store):
        store.write("games/ROOM01", make_record("ROOM01", o=None, mode=GameMode.ONLINE, is_public=True).to_document())

        assert len(client.get("/rooms", params={"q": "ali"}).json()["rooms"]) == 1
        assert client.get("/rooms", params={"q": "room0"}).json()["rooms"][0]["key"] == "ROOM01"
        assert client.get("/rooms", params={"q": "zed"}).json()["rooms"] == []

    def test_rooms_rejects_long_search(self, client):
        response = client.get("/rooms", params={"q": "x" * 65})

        assert response.status_code == 400

    def test_cors_preflight(self, client):
        response = client.options(
            "/rooms",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
        )

        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestWebSocket:
    def test_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            send_ws(ws, {"type": "ping"})

            assert recv_ws(ws) == {"type": "pong"}

    def test_subscribe_receives_writes_from_another_client(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            send_ws(alice, {"type": "subscribe", "id": 1, "path": "games/ABC123"})
            frames = [recv_ws(alice), recv_ws(alice)]
            assert {"type": "result", "id": 1, "value": None} in frames
            assert {"type": "snapshot", "path": "games/ABC123", "value": None} in frames

            document = make_record().to_document()
            assert request(bob, {"type": "set", "id": 2, "path": "games/ABC123", "value": document})["type"] == "result"

            snapshot = recv_ws(alice)
            assert snapshot["type"] == "snapshot"
            assert snapshot["value"]["players"] == {"X": "Alice", "O": "Bob"}

    def test_get_returns_current_value(self, client, store):
        store.write("games/ABC123/players/X", "Alice")

        with client.websocket_connect("/ws") as ws:
            result = request(ws, {"type": "get", "id": 3, "path": "games/ABC123/players"})

        assert result == {"type": "result", "id": 3, "value": {"X": "Alice"}}

    def test_on_disconnect_runs_when_socket_closes(self, client, store, clock):
        store.write("games/ABC123/playerPresence/O", {"isOnline": True, "lastSeen": 1})

        with client.websocket_connect("/ws") as ws:
            result = request(
                ws,
                {
                    "type": "on_disconnect",
                    "id": 4,
                    "path": "games/ABC123/playerPresence/O",
                    "op": "update",
                    "value": {"isOnline": False, "lastSeen": {".sv": "timestamp"}},
                },
            )
            assert result["type"] == "result"
            assert store.read("games/ABC123/playerPresence/O/isOnline") is True

        assert store.read("games/ABC123/playerPresence/O") == {"isOnline": False, "lastSeen": clock.now}
        assert client.get("/health").json()["connections"] == 0

    def test_invalid_message_keeps_connection(self, client):
        with client.websocket_connect("/ws") as ws:
            error = request(ws, {"type": "set", "path": "games/../etc"})
            assert error["type"] == "error"
            assert error["code"] == ChannelErrorCode.INVALID_MESSAGE

            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws) == {"type": "pong"}

    def test_undecodable_frame_returns_error(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\xc1")

            error = recv_ws(ws)
            assert error["code"] == ChannelErrorCode.INVALID_MESSAGE
            assert "failed to decode" in error["message"]

    def test_repeated_decode_errors_disconnect(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(3):
                ws.send_bytes(b"\xc1")
                assert recv_ws(ws)["type"] == "error"

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_bytes()

        assert exc_info.value.code == 4004

    def test_decode_strikes_reset_after_valid_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(2):
                ws.send_bytes(b"\xc1")
                recv_ws(ws)
            send_ws(ws, {"type": "ping"})
            recv_until(ws, "pong")
            for _ in range(2):
                ws.send_bytes(b"\xc1")
                recv_ws(ws)

            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws) == {"type": "pong"}


class TestSnapshotPersistence:
    def test_documents_survive_restart(self, tmp_path, store):
        path = tmp_path / "sync.json.gz"
        settings = SyncServerSettings(snapshot_path=str(path))

        with TestClient(create_app(settings=settings, store=store)) as client, client.websocket_connect("/ws") as ws:
            request(ws, {"type": "set", "id": 1, "path": "games/ABC123", "value": make_record().to_document()})

        assert path.exists()

        with TestClient(create_app(settings=settings)) as client:
            assert client.get("/health").json()["sessions"] == 1

    async def test_corrupt_snapshot_aborts_startup(self, tmp_path):
        path = tmp_path / "sync.json.gz"
        path.write_bytes(b"not gzip")
        app = create_app(settings=SyncServerSettings(), storage=LocalSnapshotStorage(path))

        with pytest.raises(ValueError, match="Corrupt snapshot"):
            async with app.router.lifespan_context(app):
                pass
