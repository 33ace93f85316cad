"""Typed domain exceptions for session and board rule violations.

Session-level failures subclass SessionError and carry a stable
SessionErrorCode so the controller can surface them as view state
(an error code plus a human-readable message) instead of letting them
escape to the UI. CellOccupiedError is a board contract violation:
callers must validate a move before applying it.
"""

from enum import StrEnum


class SessionErrorCode(StrEnum):
    NOT_FOUND = "not_found"
    FULL = "full"
    MODE_MISMATCH = "mode_mismatch"
    TERMINATED = "terminated"
    INVALID_MOVE = "invalid_move"
    ILLEGAL_TRANSITION = "illegal_transition"
    SYNC_FAILURE = "sync_failure"
    CONNECTIVITY_LOST = "connectivity_lost"


class GameRuleError(Exception):
    """Base exception for board rule violations raised by the board engine."""


class CellOccupiedError(GameRuleError):
    """A move was applied to a cell that already holds a symbol."""

    def __init__(self, position: int) -> None:
        self.position = position
        super().__init__(f"position {position} is already occupied")


class SessionError(Exception):
    """Base exception for failures reported to the player as view state."""

    code: SessionErrorCode

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SessionNotFoundError(SessionError):
    code = SessionErrorCode.NOT_FOUND

    def __init__(self, session_key: str) -> None:
        self.session_key = session_key
        super().__init__("Game not found")


class SessionFullError(SessionError):
    code = SessionErrorCode.FULL

    def __init__(self) -> None:
        super().__init__("Game is full")


class ModeMismatchError(SessionError):
    code = SessionErrorCode.MODE_MISMATCH

    def __init__(self, *, expected: str, requested: str) -> None:
        self.expected = expected
        self.requested = requested
        super().__init__(f"This is a {expected} game, not a {requested} game")


class SessionTerminatedError(SessionError):
    code = SessionErrorCode.TERMINATED

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason or "Game has ended")


class InvalidMoveError(SessionError):
    """Move rejected by board validation.

    Attributes:
        position: The cell the player attempted to mark.
        reason: Why the move was rejected (wrong turn, occupied, ...).

    """

    code = SessionErrorCode.INVALID_MOVE

    def __init__(self, *, position: int, reason: str) -> None:
        self.position = position
        self.reason = reason
        super().__init__(f"invalid move at {position}: {reason}")


class IllegalTransitionError(SessionError):
    """Session intent not allowed in the current phase (e.g. rematch mid-game)."""

    code = SessionErrorCode.ILLEGAL_TRANSITION


class SyncFailureError(SessionError):
    """The sync channel rejected or failed to complete a read or write."""

    code = SessionErrorCode.SYNC_FAILURE


class ConnectivityLostError(SessionError):
    code = SessionErrorCode.CONNECTIVITY_LOST

    def __init__(self) -> None:
        super().__init__("Connection lost")
