import contextlib
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from game.messaging.encoder import DecodeError, decode
from game.messaging.protocol import ConnectionProtocol
from game.messaging.router import ChannelRouter
from game.messaging.types import ChannelErrorCode, ErrorMessage

logger = structlog.get_logger()

# Disconnect after this many consecutive undecodable frames.
DEFAULT_MAX_DECODE_ERRORS = 5


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        try:
            return await self._websocket.receive_bytes()
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


async def websocket_endpoint(
    websocket: WebSocket,
    router: ChannelRouter,
    max_decode_errors: int = DEFAULT_MAX_DECODE_ERRORS,
) -> None:
    await websocket.accept()

    connection = WebSocketConnection(websocket)
    log = logger.bind(connection_id=connection.connection_id)
    log.info("websocket connected")
    await router.handle_connect(connection)

    decode_errors = 0
    try:
        while True:
            raw = await connection.receive_bytes()
            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                log.warning("decode error", error=str(e), strikes=decode_errors)
                await connection.send_message(
                    ErrorMessage(code=ChannelErrorCode.INVALID_MESSAGE, message=str(e)).model_dump(),
                )
                if decode_errors >= max_decode_errors:
                    log.info("too many decode errors, disconnecting")
                    await connection.close(code=4004, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):  # fmt: skip
        pass
    finally:
        log.info("websocket disconnected")
        await router.handle_disconnect(connection)
