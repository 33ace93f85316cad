"""Abstract sync channel: a push-based shared-document store.

The session core needs only these primitives from its backend: latest-value
subscriptions, single reads, unconditional writes and removes, a server-side
deferred write triggered by abrupt client disconnection, and a connectivity
stream. Documents are addressed by slash-separated paths; one session lives
at ``games/{key}`` and its presence children are patchable on their own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Final

from game.logic.enums import Symbol

GAMES_ROOT: Final = "games"

# Placeholder resolved to the store's clock (epoch ms) when the write is applied.
SERVER_TIMESTAMP: Final = {".sv": "timestamp"}


def game_path(session_key: str) -> str:
    return f"{GAMES_ROOT}/{session_key}"


def presence_path(session_key: str, seat: Symbol) -> str:
    return f"{GAMES_ROOT}/{session_key}/playerPresence/{seat.value}"


def split_path(path: str) -> list[str]:
    """Split a path into segments, rejecting empty ones."""
    parts = path.strip("/").split("/")
    if not all(parts):
        raise ValueError(f"invalid path {path!r}")
    return parts


class Subscription[T](ABC):
    """
    Async iterator over the latest value at a path.

    Delivers the current value first, then one value per observed change.
    Intermediate values may be coalesced: only convergence to the latest
    value is guaranteed.
    """

    def __aiter__(self) -> Subscription[T]:
        return self

    @abstractmethod
    async def __anext__(self) -> T: ...

    @abstractmethod
    async def close(self) -> None:
        """
        Stop delivery. A pending __anext__ ends with StopAsyncIteration.
        """
        ...


class OnDisconnect(ABC):
    """Deferred write registered with the store, applied if this client drops."""

    @abstractmethod
    async def set(self, value: Any) -> None: ...  # noqa: ANN401

    @abstractmethod
    async def update(self, values: dict[str, Any]) -> None: ...

    @abstractmethod
    async def cancel(self) -> None: ...


class SyncChannel(ABC):
    """
    One client's handle on the shared-document store.

    Every read and write is a coroutine. Failures surface as
    SyncFailureError. Writes are unconditional overwrites: there is no
    compare-and-swap, so the last writer wins.
    """

    @abstractmethod
    def subscribe(self, path: str) -> Subscription[Any]:
        """Stream of full snapshots (None when the document is absent)."""
        ...

    @abstractmethod
    def connectivity(self) -> Subscription[bool]:
        """Stream of whether this client currently reaches the store."""
        ...

    @abstractmethod
    async def get(self, path: str) -> Any:  # noqa: ANN401
        """Single snapshot of the value at path, or None."""
        ...

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:  # noqa: ANN401
        """Replace the value at path. None removes it."""
        ...

    @abstractmethod
    async def update(self, path: str, values: dict[str, Any]) -> None:
        """Replace only the named children of path."""
        ...

    @abstractmethod
    async def remove(self, path: str) -> None: ...

    @abstractmethod
    def on_disconnect(self, path: str) -> OnDisconnect: ...

    @abstractmethod
    async def children(self, path: str) -> dict[str, Any]:
        """Snapshot of every child under path, keyed by child name."""
        ...
