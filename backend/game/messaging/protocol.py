"""Transport-neutral connection interface for the sync channel server."""

from abc import ABC, abstractmethod
from typing import Any

from game.messaging.encoder import decode, encode


class ConnectionProtocol(ABC):
    """
    One client connection carrying MessagePack frames.

    ChannelRouter only talks to this interface, so routing is tested
    against an in-memory connection instead of a real WebSocket.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique id; also the owner id for the client's on-disconnect writes."""
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive_bytes(self) -> bytes: ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_message(self, data: dict[str, Any]) -> None:
        await self.send_bytes(encode(data))

    async def receive_message(self) -> dict[str, Any]:
        raw = await self.receive_bytes()
        return decode(raw)
