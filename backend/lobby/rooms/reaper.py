"""Periodic garbage collection of finished and abandoned session documents."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from game.logic.clock import now_ms
from game.session.models import SessionRecord
from game.sync.protocol import GAMES_ROOT, game_path

if TYPE_CHECKING:
    from game.logic.clock import Clock
    from game.sync.protocol import SyncChannel

logger = structlog.get_logger()

_MS_PER_SECOND = 1000


def last_activity(record: SessionRecord) -> int:
    """Latest of the last move and any seat's last heartbeat."""
    return max(record.last_move, record.created_at, *(p.last_seen for p in record.player_presence.values()))


class SessionReaper:
    """Removes session documents nobody will come back to.

    A session goes once it has seen no move and no heartbeat for
    session_ttl_seconds, or for terminated_ttl_seconds once terminated.
    The shorter window still lets the remaining player read the reason.
    """

    def __init__(
        self,
        channel: SyncChannel,
        *,
        session_ttl_seconds: int = 3600,
        terminated_ttl_seconds: int = 600,
        interval_seconds: float = 60,
        clock: Clock = now_ms,
    ) -> None:
        self._channel = channel
        self._session_ttl_ms = session_ttl_seconds * _MS_PER_SECOND
        self._terminated_ttl_ms = terminated_ttl_seconds * _MS_PER_SECOND
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    def is_expired(self, record: SessionRecord, now: int) -> bool:
        ttl_ms = self._terminated_ttl_ms if record.is_terminated else self._session_ttl_ms
        return now - last_activity(record) > ttl_ms

    async def reap(self) -> list[str]:
        """Remove every expired session once. Returns the removed keys."""
        now = self._clock()
        removed: list[str] = []
        for key, raw in (await self._channel.children(GAMES_ROOT)).items():
            try:
                record = SessionRecord.from_document({"id": key, **raw}) if isinstance(raw, dict) else None
            except ValidationError:
                record = None
            if record is None:
                logger.warning("removing malformed session document", session_key=key)
            elif not self.is_expired(record, now):
                continue
            await self._channel.remove(game_path(key))
            removed.append(key)
            logger.info("session expired", session_key=key)
        return removed

    async def _loop(self) -> None:  # pragma: no cover
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.reap()
            except Exception:
                logger.exception("session reaper pass failed")
