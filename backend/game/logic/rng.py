"""
Random seat and turn assignment.

Uses the stdlib Mersenne Twister, not a cryptographic source. Tests inject
a seeded random.Random.
"""

import random

from game.logic.enums import Symbol

_SYMBOLS = (Symbol.X, Symbol.O)


def choose_symbol(rng: random.Random | None = None) -> Symbol:
    """Pick X or O with equal probability."""
    return (rng or random).choice(_SYMBOLS)
