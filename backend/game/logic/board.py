"""
Board engine: pure functions over a 3x3 tic-tac-toe grid.

A board is a 9-tuple of cells indexed row-major (0 = top-left, 8 = bottom-right).
Each cell is EMPTY ("") or a Symbol value. Nothing here performs I/O or keeps
state; callers validate with is_valid_move() before apply_move().
"""

from collections.abc import Sequence

from game.logic.enums import Symbol
from game.logic.exceptions import CellOccupiedError
from game.logic.types import BoardStats, WinResult

EMPTY = ""
BOARD_SIZE = 9

type Board = tuple[str, ...]

# Checked in this order: rows, columns, diagonals.
WINNING_LINES: tuple[tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


def empty_board() -> Board:
    return (EMPTY,) * BOARD_SIZE


def is_valid_move(
    board: Sequence[str],
    position: int,
    current_player: Symbol,
    requesting_symbol: Symbol,
) -> bool:
    """Check bounds, emptiness of the target cell, and that it is the requester's turn."""
    if not 0 <= position < BOARD_SIZE:
        return False
    if board[position] != EMPTY:
        return False
    return current_player == requesting_symbol


def apply_move(board: Sequence[str], position: int, symbol: Symbol) -> Board:
    """Return a new board with position marked for symbol.

    Raises CellOccupiedError if the cell is taken. This is a contract
    violation: is_valid_move() must be checked first.
    """
    if board[position] != EMPTY:
        raise CellOccupiedError(position)
    cells = list(board)
    cells[position] = symbol.value
    return tuple(cells)


def evaluate(board: Sequence[str]) -> WinResult:
    """Scan the winning lines in fixed order and report the first completed one.

    With no completed line, the board is a draw iff every cell is filled.
    """
    for line in WINNING_LINES:
        a, b, c = line
        if board[a] != EMPTY and board[a] == board[b] == board[c]:
            return WinResult(winner=Symbol(board[a]), winning_line=line, is_draw=False)
    return WinResult(is_draw=all(cell != EMPTY for cell in board))


def next_player(symbol: Symbol) -> Symbol:
    return symbol.opponent


def empty_positions(board: Sequence[str]) -> list[int]:
    return [i for i, cell in enumerate(board) if cell == EMPTY]


def is_winning_position(board: Sequence[str], position: int) -> bool:
    """True if position belongs to the board's completed line."""
    line = evaluate(board).winning_line
    return line is not None and position in line


def board_stats(board: Sequence[str]) -> BoardStats:
    return BoardStats(
        x_count=sum(1 for cell in board if cell == Symbol.X),
        o_count=sum(1 for cell in board if cell == Symbol.O),
        empty_count=sum(1 for cell in board if cell == EMPTY),
    )


def is_consistent(board: Sequence[str], current_player: Symbol, starting_player: Symbol = Symbol.X) -> bool:
    """Check the move-count invariant against whose turn it is.

    The starting player leads by one mark while the other player is to move,
    and the counts are equal while the starting player is to move.
    """
    stats = board_stats(board)
    counts = {Symbol.X: stats.x_count, Symbol.O: stats.o_count}
    lead = counts[starting_player] - counts[starting_player.opponent]
    if current_player == starting_player:
        return lead == 0
    return lead == 1
