from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from game.messaging.types import (
    CancelOnDisconnectMessage,
    ChannelErrorCode,
    ErrorMessage,
    GetMessage,
    OnDisconnectMessage,
    PingMessage,
    PongMessage,
    RemoveMessage,
    ResultMessage,
    SetMessage,
    SnapshotMessage,
    SubscribeMessage,
    UnsubscribeMessage,
    UpdateMessage,
    parse_client_message,
)

if TYPE_CHECKING:
    from game.messaging.protocol import ConnectionProtocol
    from game.sync.memory import DocumentStore, LatestValue

logger = structlog.get_logger()


class _Watch:
    """One forwarded subscription: the store watcher and the task pumping it to the client."""

    def __init__(self, watcher: LatestValue[Any], task: asyncio.Task[None]) -> None:
        self.watcher = watcher
        self.task = task

    async def close(self) -> None:
        await self.watcher.close()
        self.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self.task


class ChannelRouter:
    """
    Serves a DocumentStore to remote clients.

    Each connection may subscribe to any number of paths; every change is
    pushed as a snapshot. When a connection goes away, its subscriptions
    are torn down and its on-disconnect writes are applied to the store.
    This class holds no transport code and is tested with mock connections.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._watches: dict[str, dict[str, _Watch]] = {}

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def connection_count(self) -> int:
        return len(self._watches)

    def subscriptions(self, connection_id: str) -> list[str]:
        return sorted(self._watches.get(connection_id, {}))

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._watches.setdefault(connection.connection_id, {})

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        watches = self._watches.pop(connection.connection_id, {})
        for watch in watches.values():
            await watch.close()
        self._store.run_on_disconnect(connection.connection_id)

    async def handle_message(self, connection: ConnectionProtocol, raw_message: dict[str, Any]) -> None:
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message", connection_id=connection.connection_id, error=str(e))
            await self._send_error(connection, None, ChannelErrorCode.INVALID_MESSAGE, str(e))
            return

        if isinstance(message, PingMessage):
            await connection.send_message(PongMessage().model_dump())
        elif isinstance(message, SubscribeMessage):
            await self._subscribe(connection, message)
        elif isinstance(message, UnsubscribeMessage):
            await self._unsubscribe(connection, message)
        elif isinstance(message, GetMessage):
            await self._send_result(connection, message.id, self._store.read(message.path))
        else:
            await self._handle_write(connection, message)

    async def _handle_write(
        self,
        connection: ConnectionProtocol,
        message: SetMessage | UpdateMessage | RemoveMessage | OnDisconnectMessage | CancelOnDisconnectMessage,
    ) -> None:
        owner = connection.connection_id
        try:
            if isinstance(message, SetMessage):
                self._store.write(message.path, message.value)
            elif isinstance(message, UpdateMessage):
                self._store.patch(message.path, message.values)
            elif isinstance(message, RemoveMessage):
                self._store.remove(message.path)
            elif isinstance(message, OnDisconnectMessage):
                if message.op == "update" and not isinstance(message.value, dict):
                    raise ValueError("on_disconnect update requires a map value")
                self._store.register_on_disconnect(owner, message.path, message.op, message.value)
            else:
                self._store.cancel_on_disconnect(owner, message.path)
        except ValueError as e:
            logger.warning("write rejected", connection_id=owner, path=message.path, error=str(e))
            await self._send_error(connection, message.id, ChannelErrorCode.WRITE_FAILED, str(e))
            return
        await self._send_result(connection, message.id, None)

    async def _subscribe(self, connection: ConnectionProtocol, message: SubscribeMessage) -> None:
        watches = self._watches.setdefault(connection.connection_id, {})
        if message.path in watches:
            await self._send_error(
                connection,
                message.id,
                ChannelErrorCode.ALREADY_SUBSCRIBED,
                f"already subscribed to {message.path}",
            )
            return
        watcher = self._store.watch(message.path)
        task = asyncio.create_task(self._forward(connection, message.path, watcher))
        watches[message.path] = _Watch(watcher, task)
        await self._send_result(connection, message.id, None)

    async def _unsubscribe(self, connection: ConnectionProtocol, message: UnsubscribeMessage) -> None:
        watch = self._watches.get(connection.connection_id, {}).pop(message.path, None)
        if watch is None:
            await self._send_error(
                connection,
                message.id,
                ChannelErrorCode.NOT_SUBSCRIBED,
                f"not subscribed to {message.path}",
            )
            return
        await watch.close()
        await self._send_result(connection, message.id, None)

    async def _forward(self, connection: ConnectionProtocol, path: str, watcher: LatestValue[Any]) -> None:
        try:
            async for value in watcher:
                await connection.send_message(SnapshotMessage(path=path, value=value).model_dump())
        except (ConnectionError, RuntimeError):
            logger.debug("snapshot push stopped, connection gone", connection_id=connection.connection_id)

    async def _send_result(self, connection: ConnectionProtocol, request_id: int | None, value: Any) -> None:  # noqa: ANN401
        await connection.send_message(ResultMessage(id=request_id, value=value).model_dump())

    async def _send_error(
        self,
        connection: ConnectionProtocol,
        request_id: int | None,
        code: ChannelErrorCode,
        message: str,
    ) -> None:
        await connection.send_message(ErrorMessage(id=request_id, code=code, message=message).model_dump())
