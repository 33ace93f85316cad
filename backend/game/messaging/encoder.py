"""
MessagePack framing for the sync channel wire protocol.

Every frame is a single map. Decoding enforces size limits so a client
cannot make the server allocate unbounded memory for one frame.
"""

from enum import Enum
from typing import Any

import msgpack


def _plain(obj: object) -> object:
    """
    Recursively convert values msgpack cannot pack on its own.

    Enum members become their values and tuples become lists; dict keys
    are coerced to strings since document paths are string-keyed.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {str(_plain(k)): _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(item) for item in obj]
    return obj


def encode(data: dict[str, Any]) -> bytes:
    return msgpack.packb(_plain(data))


class DecodeError(Exception):
    """Raised when a frame is not valid MessagePack, not a map, or too large."""


# A session document is well under 2KB; the limits leave room for
# presence and room listings without allowing abuse.
MAX_BUFFER_LEN = 64 * 1024
MAX_STR_LEN = 16 * 1024
MAX_BIN_LEN = 16 * 1024
MAX_ARRAY_LEN = 256
MAX_MAP_LEN = 256
MAX_EXT_LEN = 256


def decode(data: bytes) -> dict[str, Any]:
    """
    Decode one frame into a dict.

    Raises DecodeError if data is invalid, not a map, or exceeds size limits.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")

    return result
