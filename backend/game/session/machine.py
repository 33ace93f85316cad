"""
Session state machine: the single validating authority for session transitions.

Every function takes the latest observed SessionRecord and returns a new one
(or raises a SessionError); nothing here touches the sync channel. Time is
passed in as epoch milliseconds and randomness as a random.Random so the
whole machine is deterministic under test.

Phases: AWAITING_OPPONENT -> IN_PROGRESS -> GAME_OVER -> (REMATCH_PENDING ->
IN_PROGRESS | TERMINATED); AWAITING_OPPONENT | IN_PROGRESS -> TERMINATED via
leave or presence timeout. TERMINATED is absorbing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

from game.logic.board import (
    BOARD_SIZE,
    EMPTY,
    apply_move as place_symbol,
    empty_board,
    evaluate,
    is_valid_move,
    next_player,
)
from game.logic.enums import GameMode, Symbol
from game.logic.exceptions import (
    IllegalTransitionError,
    InvalidMoveError,
    ModeMismatchError,
    SessionFullError,
    SessionNotFoundError,
    SessionTerminatedError,
)
from game.logic.rng import choose_symbol
from game.session.models import PlayerPresence, SessionRecord

if TYPE_CHECKING:
    import random


class JoinResult(NamedTuple):
    record: SessionRecord
    seat: Symbol
    changed: bool  # False for a reconnect that found the name already seated


def create_session(
    key: str,
    creator_name: str,
    mode: GameMode,
    *,
    now: int,
    rng: random.Random | None = None,
) -> tuple[SessionRecord, Symbol]:
    """Allocate a fresh record with the creator in a random seat. X opens the first game."""
    seat = choose_symbol(rng)
    players: dict[Symbol, str | None] = {Symbol.X: None, Symbol.O: None}
    players[seat] = creator_name
    presence = {s: PlayerPresence() for s in Symbol}
    presence[seat] = PlayerPresence(is_online=True, last_seen=now)
    record = SessionRecord(
        id=key,
        board=empty_board(),
        current_player=Symbol.X,
        starting_player=Symbol.X,
        players=players,
        mode=mode,
        is_public=mode == GameMode.ONLINE,
        player_presence=presence,
        play_again_requests={s: False for s in Symbol},
        created_at=now,
        last_move=now,
    )
    return record, seat


def join_session(
    record: SessionRecord | None,
    key: str,
    name: str,
    mode: GameMode,
    *,
    now: int,
) -> JoinResult:
    """Seat name in the session, or recognize a reconnect.

    The first open seat (X, then O) is taken even when the name matches the
    seated player. Only a full session is checked for a reconnect: a name
    that already holds a seat gets it back with no write needed.
    """
    if record is None:
        raise SessionNotFoundError(key)
    if record.is_terminated:
        raise SessionTerminatedError(record.termination_reason)
    if record.mode != mode:
        raise ModeMismatchError(expected=record.mode, requested=mode)

    open_seats = record.open_seats
    if not open_seats:
        existing = record.seat_of(name)
        if existing is None:
            raise SessionFullError
        return JoinResult(record, existing, changed=False)

    seat = open_seats[0]
    updated = record.model_copy(
        update={
            "players": {**record.players, seat: name},
            "player_presence": {**record.player_presence, seat: PlayerPresence(is_online=True, last_seen=now)},
        },
    )
    return JoinResult(updated, seat, changed=True)


def validate_move(record: SessionRecord, position: int, symbol: Symbol) -> None:
    """Raise if symbol may not play position on this record."""
    if record.is_terminated:
        raise SessionTerminatedError(record.termination_reason)
    if record.is_game_over:
        raise InvalidMoveError(position=position, reason="game is over")
    if not record.has_opponent:
        raise InvalidMoveError(position=position, reason="waiting for opponent")
    if is_valid_move(record.board, position, record.current_player, symbol):
        return
    if not 0 <= position < BOARD_SIZE:
        reason = "position out of range"
    elif record.board[position] != EMPTY:
        reason = "cell is occupied"
    else:
        reason = "not your turn"
    raise InvalidMoveError(position=position, reason=reason)


def apply_move(record: SessionRecord, position: int, symbol: Symbol, *, now: int) -> SessionRecord:
    """Validate and apply a move, then evaluate the board and pass the turn."""
    validate_move(record, position, symbol)
    board = place_symbol(record.board, position, symbol)
    result = evaluate(board)
    return record.model_copy(
        update={
            "board": board,
            "current_player": next_player(symbol),
            "winner": result.winner,
            "winning_line": result.winning_line,
            "is_draw": result.is_draw,
            "is_game_over": result.is_game_over,
            "last_move": max(now, record.last_move),
        },
    )


def request_play_again(
    record: SessionRecord,
    symbol: Symbol,
    *,
    now: int,
    rng: random.Random | None = None,
) -> SessionRecord:
    """Cast symbol's rematch vote; the second vote resets the session."""
    if record.is_terminated:
        raise SessionTerminatedError(record.termination_reason)
    if not record.is_game_over:
        raise IllegalTransitionError("Play again is only available when the game is over")
    votes = {**record.play_again_requests, symbol: True}
    if all(votes.values()):
        return reset_session(record, now=now, rng=rng)
    return record.model_copy(update={"play_again_requests": votes})


def cancel_play_again(record: SessionRecord, symbol: Symbol) -> SessionRecord:
    return record.model_copy(update={"play_again_requests": {**record.play_again_requests, symbol: False}})


def decline_play_again(record: SessionRecord, symbol: Symbol) -> SessionRecord:
    """Reject the opponent's rematch request by clearing their vote."""
    return cancel_play_again(record, symbol.opponent)


def reset_session(record: SessionRecord, *, now: int, rng: random.Random | None = None) -> SessionRecord:
    """Start a new game in the same session with a random opening player."""
    first = choose_symbol(rng)
    return record.model_copy(
        update={
            "board": empty_board(),
            "current_player": first,
            "starting_player": first,
            "winner": None,
            "winning_line": None,
            "is_draw": False,
            "is_game_over": False,
            "player_presence": {**record.player_presence, first: PlayerPresence(is_online=True, last_seen=now)},
            "play_again_requests": {s: False for s in Symbol},
            "is_terminated": False,
            "last_move": max(now, record.last_move),
        },
    )


def leave_session(
    record: SessionRecord,
    symbol: Symbol,
    *,
    now: int,
    disconnected: bool = False,
) -> SessionRecord:
    """Vacate symbol's seat and terminate the session.

    The reason names the leaver; disconnected=True is used when the
    presence monitor judged the seat gone rather than an explicit leave.
    Already-terminated records are returned unchanged.
    """
    if record.is_terminated:
        return record
    name = record.players[symbol] or f"Player {symbol}"
    reason = f"{name} disconnected" if disconnected else f"{name} left the game"
    last_seen = record.player_presence[symbol].last_seen if disconnected else now
    return record.model_copy(
        update={
            "players": {**record.players, symbol: None},
            "player_presence": {
                **record.player_presence,
                symbol: PlayerPresence(is_online=False, last_seen=last_seen),
            },
            "is_terminated": True,
            "termination_reason": reason,
            "quitter": symbol,
        },
    )


def record_presence(record: SessionRecord, symbol: Symbol, presence: PlayerPresence) -> SessionRecord:
    return record.model_copy(update={"player_presence": {**record.player_presence, symbol: presence}})
