"""
Pydantic models for board evaluation results.
"""

from pydantic import BaseModel, ConfigDict

from game.logic.enums import Symbol


class WinResult(BaseModel):
    """Outcome of scanning a board for a completed line."""

    model_config = ConfigDict(frozen=True)

    winner: Symbol | None = None
    winning_line: tuple[int, int, int] | None = None
    is_draw: bool = False

    @property
    def is_game_over(self) -> bool:
        return self.winner is not None or self.is_draw


class BoardStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    x_count: int
    o_count: int
    empty_count: int

    @property
    def total_moves(self) -> int:
        return self.x_count + self.o_count
