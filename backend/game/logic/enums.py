"""
String enum definitions for tic-tac-toe session concepts.
"""

from __future__ import annotations

from enum import StrEnum


class Symbol(StrEnum):
    """A seat and the mark it places on the board."""

    X = "X"
    O = "O"  # noqa: E741

    @property
    def opponent(self) -> Symbol:
        return Symbol.O if self is Symbol.X else Symbol.X


class GameMode(StrEnum):
    """How a session is discovered.

    Online sessions show up in the public room listing; custom sessions are
    joined only by sharing the session key.
    """

    ONLINE = "online"
    CUSTOM = "custom"


class SessionPhase(StrEnum):
    """Lifecycle phase derived from a session record."""

    AWAITING_OPPONENT = "awaiting_opponent"
    IN_PROGRESS = "in_progress"
    GAME_OVER = "game_over"
    REMATCH_PENDING = "rematch_pending"
    TERMINATED = "terminated"


class PresenceStatus(StrEnum):
    """Liveness of a seat as shown to the other player."""

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class ConnectionStatus(StrEnum):
    """Local client's connection to the sync channel."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
