"""
Session record: the shared document describing one game.

One record lives at ``games/{key}`` in the sync channel. Every seated client
may overwrite it in full, so the model is immutable and every transition
returns a copy (see game.session.machine). Field names on the wire are
camelCase; Python attributes are snake_case.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from game.logic.board import BOARD_SIZE, EMPTY, empty_board, is_consistent
from game.logic.enums import GameMode, SessionPhase, Symbol

_CELL_VALUES = {EMPTY, Symbol.X.value, Symbol.O.value}

_DOCUMENT_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


class PlayerPresence(BaseModel):
    """A seat's self-reported liveness. last_seen is epoch milliseconds."""

    model_config = _DOCUMENT_CONFIG

    is_online: bool = False
    last_seen: int = 0


def _both_seats[T](value: dict[Any, T] | None, default: T) -> dict[Symbol, T]:
    """Fill in a seat map the store may have returned partially (dropped null children)."""
    value = value or {}
    return {seat: value.get(seat, default) for seat in Symbol}


class SessionRecord(BaseModel):
    """Authoritative shared state of one game instance."""

    model_config = _DOCUMENT_CONFIG

    id: str
    board: tuple[str, ...] = Field(default_factory=empty_board)
    current_player: Symbol = Symbol.X
    starting_player: Symbol = Symbol.X
    players: dict[Symbol, str | None] = Field(default_factory=lambda: _both_seats(None, None))
    winner: Symbol | None = None
    winning_line: tuple[int, int, int] | None = None
    is_draw: bool = False
    is_game_over: bool = False
    mode: GameMode = GameMode.CUSTOM
    is_public: bool = False
    player_presence: dict[Symbol, PlayerPresence] = Field(
        default_factory=lambda: _both_seats(None, PlayerPresence()),
    )
    play_again_requests: dict[Symbol, bool] = Field(default_factory=lambda: _both_seats(None, False))
    is_terminated: bool = False
    termination_reason: str | None = None
    quitter: Symbol | None = None
    created_at: int = 0
    last_move: int = 0

    @field_validator("board", mode="before")
    @classmethod
    def _normalize_board(cls, v: Any) -> tuple[str, ...]:  # noqa: ANN401
        # Realtime stores drop empty array slots: a sparse board may arrive
        # as None, a list with None holes, or an index-keyed dict.
        if v is None:
            return empty_board()
        if isinstance(v, dict):
            v = [v.get(str(i), v.get(i)) for i in range(BOARD_SIZE)]
        cells = tuple(EMPTY if cell is None else cell for cell in v)
        if len(cells) != BOARD_SIZE:
            raise ValueError(f"board must have {BOARD_SIZE} cells, got {len(cells)}")
        invalid = [cell for cell in cells if cell not in _CELL_VALUES]
        if invalid:
            raise ValueError(f"invalid board cells: {invalid}")
        return cells

    @field_validator("players", mode="before")
    @classmethod
    def _fill_players(cls, v: Any) -> dict[Symbol, str | None]:  # noqa: ANN401
        return _both_seats(v, None)

    @field_validator("player_presence", mode="before")
    @classmethod
    def _fill_presence(cls, v: Any) -> dict[Symbol, Any]:  # noqa: ANN401
        return _both_seats(v, PlayerPresence())

    @field_validator("play_again_requests", mode="before")
    @classmethod
    def _fill_votes(cls, v: Any) -> dict[Symbol, bool]:  # noqa: ANN401
        return _both_seats(v, False)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> SessionRecord:
        """Validate a snapshot read from the sync channel."""
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON document written to the sync channel."""
        return self.model_dump(mode="json", by_alias=True)

    @property
    def open_seats(self) -> list[Symbol]:
        return [seat for seat in Symbol if not self.players[seat]]

    @property
    def has_opponent(self) -> bool:
        """Both seats are occupied."""
        return not self.open_seats

    @property
    def phase(self) -> SessionPhase:
        if self.is_terminated:
            return SessionPhase.TERMINATED
        if not self.has_opponent:
            return SessionPhase.AWAITING_OPPONENT
        if self.is_game_over:
            if any(self.play_again_requests.values()):
                return SessionPhase.REMATCH_PENDING
            return SessionPhase.GAME_OVER
        return SessionPhase.IN_PROGRESS

    @property
    def is_board_consistent(self) -> bool:
        return is_consistent(self.board, self.current_player, self.starting_player)

    def seat_of(self, name: str) -> Symbol | None:
        """Return the seat held by name, or None if not seated."""
        for seat in Symbol:
            if self.players[seat] == name:
                return seat
        return None

    def presence_of(self, seat: Symbol) -> PlayerPresence:
        return self.player_presence[seat]
