"""
Presence: per-seat heartbeats and staleness detection.

Each seated client periodically writes its own presence ({isOnline, lastSeen})
and, on a second interval, checks both seats. A seat whose presence reads
offline for longer than the stale window is judged disconnected and the
session is terminated on that player's behalf.

The staleness rule sits behind LivenessPolicy so a push-based liveness signal
can replace the timer-driven one without touching the state machine.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

import structlog
from pydantic import BaseModel, Field

from game.logic.clock import now_ms
from game.logic.enums import PresenceStatus, Symbol
from game.session.models import PlayerPresence

if TYPE_CHECKING:
    from game.logic.clock import Clock
    from game.session.models import SessionRecord
    from game.session.settings import GameClientSettings

logger = structlog.get_logger()

_MS_PER_SECOND = 1000


class PresenceConfig(BaseModel):
    """Timing for heartbeats, staleness checks and the presence badge."""

    heartbeat_interval_seconds: float = Field(default=10, gt=0)
    staleness_check_interval_seconds: float = Field(default=15, gt=0)
    stale_after_seconds: float = Field(default=30, gt=0)
    online_window_seconds: float = Field(default=15, gt=0)
    away_window_seconds: float = Field(default=60, gt=0)

    @classmethod
    def from_settings(cls, settings: GameClientSettings) -> PresenceConfig:
        """Build PresenceConfig from GameClientSettings."""
        return cls(
            heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
            staleness_check_interval_seconds=settings.staleness_check_interval_seconds,
            stale_after_seconds=settings.stale_after_seconds,
            online_window_seconds=settings.online_window_seconds,
            away_window_seconds=settings.away_window_seconds,
        )


class LivenessPolicy(Protocol):
    """Decides what a heartbeat records and when a seat counts as gone."""

    def heartbeat(self, now: int) -> PlayerPresence: ...

    def is_stale(self, presence: PlayerPresence, now: int) -> bool: ...


class TimedLivenessPolicy:
    """Stale iff the seat reports offline and was last seen beyond the stale window."""

    def __init__(self, config: PresenceConfig | None = None) -> None:
        self._config = config or PresenceConfig()

    def heartbeat(self, now: int) -> PlayerPresence:
        return PlayerPresence(is_online=True, last_seen=now)

    def is_stale(self, presence: PlayerPresence, now: int) -> bool:
        if presence.is_online:
            return False
        return now - presence.last_seen > self._config.stale_after_seconds * _MS_PER_SECOND


def classify_presence(
    presence: PlayerPresence | None,
    now: int,
    config: PresenceConfig | None = None,
) -> PresenceStatus:
    """Badge shown for the other player: online, away (seen within a minute) or offline."""
    if presence is None or presence.last_seen == 0:
        return PresenceStatus.UNKNOWN
    config = config or PresenceConfig()
    since = now - presence.last_seen
    if presence.is_online and since < config.online_window_seconds * _MS_PER_SECOND:
        return PresenceStatus.ONLINE
    if since < config.away_window_seconds * _MS_PER_SECOND:
        return PresenceStatus.AWAY
    return PresenceStatus.OFFLINE


# Writes this client's presence (the heartbeat payload) to the channel.
HeartbeatWriter = Callable[[PlayerPresence], Awaitable[None]]
# Returns the latest observed record, or None before the first snapshot.
RecordResolver = Callable[[], "SessionRecord | None"]
# Called once with the seat judged disconnected.
DisconnectHandler = Callable[[Symbol], Awaitable[None]]


class PresenceMonitor:
    """Run the heartbeat and staleness loops for one seated client.

    The loops are asyncio tasks; stop() cancels them. beat() and check()
    perform a single iteration and are what the loops call.
    """

    def __init__(
        self,
        *,
        write_heartbeat: HeartbeatWriter,
        get_record: RecordResolver,
        on_disconnected: DisconnectHandler,
        policy: LivenessPolicy | None = None,
        config: PresenceConfig | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._config = config or PresenceConfig()
        self._policy = policy or TimedLivenessPolicy(self._config)
        self._write_heartbeat = write_heartbeat
        self._get_record = get_record
        self._on_disconnected = on_disconnected
        self._clock = clock
        self._tasks: list[asyncio.Task[None]] = []
        self._fired = False

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._fired = False
        self._tasks = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._staleness_loop()),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def beat(self) -> None:
        """Write one heartbeat. Failures are logged; the next beat retries."""
        try:
            await self._write_heartbeat(self._policy.heartbeat(self._clock()))
        except Exception:
            logger.exception("heartbeat write failed")

    async def check(self) -> Symbol | None:
        """Evaluate both seats once. Returns the seat judged disconnected, if any."""
        if self._fired:
            return None
        record = self._get_record()
        if record is None or record.is_terminated:
            return None
        now = self._clock()
        for seat in Symbol:
            if not record.players[seat]:
                continue
            if self._policy.is_stale(record.player_presence[seat], now):
                logger.info("seat judged disconnected", stale_seat=seat, last_seen=record.player_presence[seat].last_seen)
                self._fired = True
                try:
                    await self._on_disconnected(seat)
                except BaseException:
                    self._fired = False
                    raise
                return seat
        return None

    async def _heartbeat_loop(self) -> None:
        while True:
            await self.beat()
            await asyncio.sleep(self._config.heartbeat_interval_seconds)

    async def _staleness_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.staleness_check_interval_seconds)
            try:
                await self.check()
            except Exception:
                logger.exception("staleness check failed")
