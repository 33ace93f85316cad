"""In-memory sync channel backend.

DocumentStore holds one JSON-like tree and fans out latest-value snapshots
to path watchers. It also keeps the server-side on-disconnect registry:
deferred writes keyed by the client that registered them, applied when that
client drops. The WebSocket server wraps one store for all connections;
tests and single-process setups give each client an InMemorySyncChannel
over a shared store.
"""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

import structlog

from game.logic.clock import now_ms
from game.logic.exceptions import SyncFailureError
from game.sync.protocol import SERVER_TIMESTAMP, OnDisconnect, Subscription, SyncChannel, split_path

if TYPE_CHECKING:
    from collections.abc import Callable

    from game.logic.clock import Clock

logger = structlog.get_logger()

DisconnectOp = Literal["set", "update"]


class LatestValue[T](Subscription[T]):
    """Subscription that keeps only the most recent pushed value."""

    def __init__(self, on_close: Callable[[LatestValue[T]], None] | None = None) -> None:
        self._value: T | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, value: T) -> None:
        if self._closed:
            return
        self._value = value
        self._ready.set()

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        await self._ready.wait()
        if self._closed:
            raise StopAsyncIteration
        self._ready.clear()
        return self._value  # type: ignore[return-value]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready.set()
        if self._on_close is not None:
            self._on_close(self)


class DocumentStore:
    """Path-addressed JSON tree with watchers and on-disconnect hooks.

    Setting a value to None (or an empty dict) removes it, and parents left
    empty are pruned, mirroring how realtime databases drop empty nodes.
    """

    def __init__(self, clock: Clock = now_ms) -> None:
        self._root: dict[str, Any] = {}
        self._clock = clock
        self._watchers: dict[str, set[LatestValue[Any]]] = {}
        # owner_id -> path -> (op, value)
        self._on_disconnect: dict[str, dict[str, tuple[DisconnectOp, Any]]] = {}

    def read(self, path: str) -> Any:  # noqa: ANN401
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def children(self, path: str) -> dict[str, Any]:
        node = self.read(path)
        return node if isinstance(node, dict) else {}

    def write(self, path: str, value: Any) -> None:  # noqa: ANN401
        self._put(path, value)
        self._notify(path)

    def patch(self, path: str, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self._put(f"{path}/{key}", value)
        self._notify(path)

    def remove(self, path: str) -> None:
        self.write(path, None)

    def watch(self, path: str) -> LatestValue[Any]:
        """Subscribe to path; the current value is delivered first."""
        key = "/".join(split_path(path))
        watcher: LatestValue[Any] = LatestValue(on_close=lambda w: self._unwatch(key, w))
        self._watchers.setdefault(key, set()).add(watcher)
        watcher.push(self.read(key))
        return watcher

    def register_on_disconnect(self, owner_id: str, path: str, op: DisconnectOp, value: Any) -> None:  # noqa: ANN401
        self._on_disconnect.setdefault(owner_id, {})[path] = (op, copy.deepcopy(value))

    def cancel_on_disconnect(self, owner_id: str, path: str) -> None:
        hooks = self._on_disconnect.get(owner_id)
        if hooks is not None:
            hooks.pop(path, None)
            if not hooks:
                self._on_disconnect.pop(owner_id, None)

    def run_on_disconnect(self, owner_id: str) -> int:
        """Apply and forget every deferred write registered by owner_id. Returns how many ran."""
        hooks = self._on_disconnect.pop(owner_id, {})
        for path, (op, value) in hooks.items():
            if op == "update":
                self.patch(path, value)
            else:
                self.write(path, value)
        if hooks:
            logger.info("applied on-disconnect writes", owner_id=owner_id, count=len(hooks))
        return len(hooks)

    def pending_on_disconnect(self, owner_id: str) -> dict[str, tuple[DisconnectOp, Any]]:
        return dict(self._on_disconnect.get(owner_id, {}))

    def dump(self) -> dict[str, Any]:
        return copy.deepcopy(self._root)

    def load(self, data: dict[str, Any]) -> None:
        """Replace the whole tree (used when restoring a persisted snapshot)."""
        self._root = copy.deepcopy(data)
        for key in list(self._watchers):
            self._notify(key)

    def _put(self, path: str, value: Any) -> None:  # noqa: ANN401
        parts = split_path(path)
        value = self._resolve(copy.deepcopy(value))
        if value is None or value == {}:
            self._delete(parts)
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _delete(self, parts: list[str]) -> None:
        trail: list[tuple[dict[str, Any], str]] = []
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return
            trail.append((node, part))
            node = node[part]
        for parent, part in reversed(trail):
            parent.pop(part, None)
            if parent:
                break

    def _resolve(self, value: Any) -> Any:  # noqa: ANN401
        if value == SERVER_TIMESTAMP:
            return self._clock()
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items() if v is not None}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return value

    def _notify(self, path: str) -> None:
        changed = "/".join(split_path(path))
        for key, watchers in list(self._watchers.items()):
            related = key == changed or key.startswith(changed + "/") or changed.startswith(key + "/")
            if not related:
                continue
            value = self.read(key)
            for watcher in list(watchers):
                watcher.push(value)

    def _unwatch(self, key: str, watcher: LatestValue[Any]) -> None:
        watchers = self._watchers.get(key)
        if watchers is not None:
            watchers.discard(watcher)
            if not watchers:
                self._watchers.pop(key, None)


class _StoreOnDisconnect(OnDisconnect):
    def __init__(self, channel: InMemorySyncChannel, path: str) -> None:
        self._channel = channel
        self._path = path

    async def set(self, value: Any) -> None:  # noqa: ANN401
        self._channel._ensure_connected()
        self._channel.store.register_on_disconnect(self._channel.client_id, self._path, "set", value)

    async def update(self, values: dict[str, Any]) -> None:
        self._channel._ensure_connected()
        self._channel.store.register_on_disconnect(self._channel.client_id, self._path, "update", values)

    async def cancel(self) -> None:
        self._channel.store.cancel_on_disconnect(self._channel.client_id, self._path)


class InMemorySyncChannel(SyncChannel):
    """
    One client's view of a shared DocumentStore.

    simulate_disconnect() models an abrupt drop: the store applies this
    client's on-disconnect writes, the connectivity stream reports False,
    and further reads and writes fail with SyncFailureError until
    simulate_reconnect().
    """

    def __init__(self, store: DocumentStore, client_id: str | None = None) -> None:
        self.store = store
        self.client_id = client_id or str(uuid4())
        self._connected = True
        self._connectivity: set[LatestValue[bool]] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, path: str) -> Subscription[Any]:
        return self.store.watch(path)

    def connectivity(self) -> Subscription[bool]:
        watcher: LatestValue[bool] = LatestValue(on_close=self._connectivity.discard)
        self._connectivity.add(watcher)
        watcher.push(self._connected)
        return watcher

    async def get(self, path: str) -> Any:  # noqa: ANN401
        self._ensure_connected()
        return self.store.read(path)

    async def set(self, path: str, value: Any) -> None:  # noqa: ANN401
        self._ensure_connected()
        self.store.write(path, value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        self._ensure_connected()
        self.store.patch(path, values)

    async def remove(self, path: str) -> None:
        self._ensure_connected()
        self.store.remove(path)

    def on_disconnect(self, path: str) -> OnDisconnect:
        return _StoreOnDisconnect(self, path)

    async def children(self, path: str) -> dict[str, Any]:
        self._ensure_connected()
        return self.store.children(path)

    def simulate_disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self.store.run_on_disconnect(self.client_id)
        self._push_connectivity()

    def simulate_reconnect(self) -> None:
        if self._connected:
            return
        self._connected = True
        self._push_connectivity()

    def _push_connectivity(self) -> None:
        for watcher in list(self._connectivity):
            watcher.push(self._connected)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise SyncFailureError("Sync channel is offline")
