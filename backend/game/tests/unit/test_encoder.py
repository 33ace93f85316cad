"""
Tests for MessagePack encoder module.
"""

import msgpack
import pytest

from game.logic.enums import Symbol
from game.messaging.encoder import MAX_ARRAY_LEN, MAX_BUFFER_LEN, DecodeError, decode, encode
from game.messaging.types import ChannelErrorCode, ServerMessageType


class TestEncode:
    def test_round_trip_snapshot_frame(self) -> None:
        data = {
            "type": "snapshot",
            "path": "games/ABC123",
            "value": {"board": ["X", "", "O"], "winner": None, "isTerminated": False},
        }

        assert decode(encode(data)) == data

    def test_enums_become_values(self) -> None:
        data = {"type": ServerMessageType.ERROR, "code": ChannelErrorCode.WRITE_FAILED, "seat": Symbol.O}

        assert decode(encode(data)) == {"type": "error", "code": "write_failed", "seat": "O"}

    def test_enum_keys_become_strings(self) -> None:
        data = {"playAgainRequests": {Symbol.X: True, Symbol.O: False}}

        assert decode(encode(data)) == {"playAgainRequests": {"X": True, "O": False}}

    def test_integer_keys_become_strings(self) -> None:
        data = {"value": {0: "X", 4: "O"}}

        assert decode(encode(data)) == {"value": {"0": "X", "4": "O"}}

    def test_tuples_become_lists(self) -> None:
        data = {"winningLine": (0, 4, 8), "nested": [({1: 2},)]}

        assert decode(encode(data)) == {"winningLine": [0, 4, 8], "nested": [[{"1": 2}]]}


class TestDecodeErrors:
    def test_invalid_msgpack_data_raises_decode_error(self) -> None:
        with pytest.raises(DecodeError, match="failed to decode"):
            decode(b"\xff\xff\xff")

    def test_non_map_result_raises_decode_error(self) -> None:
        """Valid msgpack that is not a map is rejected."""
        data = msgpack.packb([1, 2, 3])

        with pytest.raises(DecodeError, match="expected map, got list"):
            decode(data)

    def test_oversized_payload_rejected(self) -> None:
        """Payloads exceeding MAX_BUFFER_LEN are rejected before deserialization."""
        oversized = b"\x00" * (MAX_BUFFER_LEN + 1)

        with pytest.raises(DecodeError, match="payload too large"):
            decode(oversized)

    def test_oversized_array_rejected(self) -> None:
        data = msgpack.packb({"value": list(range(MAX_ARRAY_LEN + 1))})

        with pytest.raises(DecodeError, match="failed to decode"):
            decode(data)

    def test_payload_within_limits_accepted(self) -> None:
        data = msgpack.packb({"key": "x" * 100})

        assert len(data) <= MAX_BUFFER_LEN
        assert decode(data)["key"] == "x" * 100
