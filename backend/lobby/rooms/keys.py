"""Session key generation.

Keys are 6 uppercase alphanumeric characters drawn from a non-cryptographic
source: they only need to be short enough to read out loud, not secret.
"""

from __future__ import annotations

import random
import string
from typing import TYPE_CHECKING

import structlog

from game.logic.exceptions import SyncFailureError
from game.sync.protocol import game_path

if TYPE_CHECKING:
    from game.sync.protocol import SyncChannel

logger = structlog.get_logger()

SESSION_KEY_LENGTH = 6
SESSION_KEY_ALPHABET = string.ascii_uppercase + string.digits


def generate_session_key(rng: random.Random | None = None) -> str:
    source = rng or random
    return "".join(source.choice(SESSION_KEY_ALPHABET) for _ in range(SESSION_KEY_LENGTH))


def normalize_session_key(key: str) -> str:
    """Keys are typed by hand; accept lowercase and surrounding whitespace."""
    return key.strip().upper()


def is_valid_session_key(key: str) -> bool:
    return len(key) == SESSION_KEY_LENGTH and all(ch in SESSION_KEY_ALPHABET for ch in key)


async def allocate_session_key(
    channel: SyncChannel,
    rng: random.Random | None = None,
    attempts: int = 5,
) -> str:
    """Generate a key whose document does not exist yet.

    The existence check and the creator's first write are not atomic, so two
    creators can still race onto the same fresh key; this only avoids
    overwriting sessions that are already there.
    """
    for _ in range(attempts):
        key = generate_session_key(rng)
        if await channel.get(game_path(key)) is None:
            return key
        logger.info("session key collision, regenerating", session_key=key)
    raise SyncFailureError(f"Could not allocate a free session key after {attempts} attempts")
