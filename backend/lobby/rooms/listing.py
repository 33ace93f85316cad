"""Public room listing: open online sessions a stranger can join."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from game.logic.enums import GameMode, Symbol
from game.session.models import SessionRecord

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = structlog.get_logger()


class RoomSummary(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    key: str
    host_name: str
    open_seat: Symbol
    created_at: int


def is_listable(record: SessionRecord) -> bool:
    """Public, online, still running and missing a player."""
    return (
        record.mode == GameMode.ONLINE
        and record.is_public
        and not record.is_game_over
        and not record.is_terminated
        and bool(record.open_seats)
    )


def _summarize(key: str, record: SessionRecord) -> RoomSummary:
    host = next((name for name in record.players.values() if name), "")
    return RoomSummary(key=key, host_name=host, open_seat=record.open_seats[0], created_at=record.created_at)


def list_public_rooms(documents: Mapping[str, Any], search: str | None = None) -> list[RoomSummary]:
    """
    Summaries of listable sessions, newest first.

    documents maps session keys to raw session documents (the children of
    ``games``). search, when given, matches case-insensitively against the
    host name or the room key. Malformed documents are skipped.
    """
    needle = (search or "").strip().lower()
    rooms: list[RoomSummary] = []
    for key, raw in documents.items():
        if not isinstance(raw, dict):
            continue
        try:
            record = SessionRecord.from_document({"id": key, **raw})
        except ValidationError:
            logger.debug("skipping malformed session document", session_key=key)
            continue
        if not is_listable(record):
            continue
        summary = _summarize(key, record)
        if needle and needle not in summary.host_name.lower() and needle not in summary.key.lower():
            continue
        rooms.append(summary)
    rooms.sort(key=lambda room: room.created_at, reverse=True)
    return rooms
