"""
Client-side session controller.

GameSession binds one player to one session document on a sync channel. It
runs every intent (create, join, move, rematch votes, leave) through the pure
state machine against the latest observed record, writes the full result back,
and keeps a local view (record, seat, error, connection status) for the UI.

Writes are last-writer-wins: two clients acting on the same snapshot can
overwrite each other. The controller does not retry; it reverts its optimistic
view and reports the failure.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from game.logic.clock import now_ms
from game.logic.enums import ConnectionStatus, GameMode, PresenceStatus, SessionPhase, Symbol
from game.logic.exceptions import (
    ConnectivityLostError,
    IllegalTransitionError,
    SessionError,
    SessionErrorCode,
    SyncFailureError,
)
from game.session import machine
from game.session.models import SessionRecord
from game.session.presence import PresenceConfig, PresenceMonitor, classify_presence
from game.session.settings import GameClientSettings
from game.sync.protocol import SERVER_TIMESTAMP, game_path, presence_path
from lobby.rooms.keys import allocate_session_key, normalize_session_key

if TYPE_CHECKING:
    import random

    from game.logic.clock import Clock
    from game.session.models import PlayerPresence
    from game.session.presence import LivenessPolicy
    from game.sync.protocol import Subscription, SyncChannel

logger = structlog.get_logger()

# Errors that a fresh snapshot or a restored connection proves stale.
_SNAPSHOT_CLEARS = {SessionErrorCode.NOT_FOUND, SessionErrorCode.CONNECTIVITY_LOST}

# Transport failures a channel implementation may raise instead of SyncFailureError.
_TRANSPORT_ERRORS = (OSError,)


class SessionErrorView(BaseModel):
    """Error shown to the player: a stable code plus a readable message."""

    model_config = ConfigDict(frozen=True)

    code: SessionErrorCode
    message: str

    @classmethod
    def from_error(cls, error: SessionError) -> SessionErrorView:
        return cls(code=error.code, message=error.message)


SessionListener = Callable[["GameSession"], Awaitable[None]]


class GameSession:
    def __init__(
        self,
        channel: SyncChannel,
        player_name: str,
        mode: GameMode = GameMode.CUSTOM,
        *,
        presence_config: PresenceConfig | None = None,
        liveness_policy: LivenessPolicy | None = None,
        clock: Clock = now_ms,
        rng: random.Random | None = None,
        listener: SessionListener | None = None,
        key_attempts: int = 5,
    ) -> None:
        self._channel = channel
        self._player_name = player_name
        self._mode = mode
        self._presence_config = presence_config or PresenceConfig()
        self._liveness_policy = liveness_policy
        self._clock = clock
        self._rng = rng
        self._listener = listener
        self._key_attempts = key_attempts

        self._key: str | None = None
        self._seat: Symbol | None = None
        self._state: SessionRecord | None = None
        self._error: SessionErrorView | None = None
        self._connection_status = ConnectionStatus.CONNECTING
        self._deleted = False

        self._subscriptions: list[Subscription[Any]] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._monitor: PresenceMonitor | None = None
        self._log = logger.bind(player_name=player_name)

    @classmethod
    def from_settings(
        cls,
        channel: SyncChannel,
        player_name: str,
        mode: GameMode = GameMode.CUSTOM,
        settings: GameClientSettings | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> GameSession:
        """Build a session with presence timing and key allocation taken from GAME_* settings."""
        settings = settings or GameClientSettings()
        return cls(
            channel,
            player_name,
            mode,
            presence_config=PresenceConfig.from_settings(settings),
            key_attempts=settings.session_key_attempts,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    @property
    def session_key(self) -> str | None:
        return self._key

    @property
    def player_name(self) -> str:
        return self._player_name

    @property
    def seat(self) -> Symbol | None:
        return self._seat

    @property
    def state(self) -> SessionRecord | None:
        return self._state

    @property
    def error(self) -> SessionErrorView | None:
        return self._error

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection_status

    @property
    def monitor(self) -> PresenceMonitor | None:
        return self._monitor

    @property
    def phase(self) -> SessionPhase | None:
        return self._state.phase if self._state is not None else None

    @property
    def is_my_turn(self) -> bool:
        return (
            self._state is not None
            and self._seat is not None
            and self._state.phase == SessionPhase.IN_PROGRESS
            and self._state.current_player == self._seat
        )

    @property
    def has_requested_play_again(self) -> bool:
        if self._state is None or self._seat is None:
            return False
        return self._state.play_again_requests[self._seat]

    @property
    def opponent_requested_play_again(self) -> bool:
        if self._state is None or self._seat is None:
            return False
        return self._state.play_again_requests[self._seat.opponent]

    def opponent_presence_status(self, now: int | None = None) -> PresenceStatus:
        if self._state is None or self._seat is None or not self._state.players[self._seat.opponent]:
            return PresenceStatus.UNKNOWN
        presence = self._state.player_presence[self._seat.opponent]
        return classify_presence(presence, self._clock() if now is None else now, self._presence_config)

    def clear_error(self) -> None:
        self._error = None

    # ------------------------------------------------------------------
    # Seating
    # ------------------------------------------------------------------

    async def create(self, session_key: str | None = None) -> Symbol | None:
        """Create a session and take a random seat. Returns the seat, or None on failure."""
        try:
            if session_key is None:
                session_key = await allocate_session_key(self._channel, self._rng, self._key_attempts)
            record, seat = machine.create_session(
                normalize_session_key(session_key),
                self._player_name,
                self._mode,
                now=self._clock(),
                rng=self._rng,
            )
            await self._write(record)
            try:
                await self._register_on_disconnect(record.id, seat)
            except SessionError:
                # an unbound document would stay listed until the reaper ran
                with contextlib.suppress(SessionError, *_TRANSPORT_ERRORS):
                    await self._channel.remove(game_path(record.id))
                raise
        except SessionError as e:
            self._fail(e)
            return None

        self._bind(record.id, seat)
        self._state = record
        self._error = None
        self._log.info("session created", mode=self._mode)
        await self._notify()
        return seat

    async def join(self, session_key: str) -> Symbol | None:
        """Take a seat in an existing session (or recover ours). Returns the seat, or None on failure."""
        session_key = normalize_session_key(session_key)
        try:
            raw = await self._read(game_path(session_key))
            record = self._parse(raw) if raw is not None else None
            result = machine.join_session(record, session_key, self._player_name, self._mode, now=self._clock())
            if result.changed:
                await self._write(result.record)
            await self._register_on_disconnect(session_key, result.seat)
        except SessionError as e:
            self._fail(e)
            return None

        self._bind(session_key, result.seat)
        self._state = result.record
        self._error = None
        self._log.info("joined session", reconnect=not result.changed)
        await self._notify()
        return result.seat

    # ------------------------------------------------------------------
    # Sync loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the session document and connectivity, and start the presence monitor."""
        if self._key is None or self._seat is None:
            raise RuntimeError("start() requires a created or joined session")
        if self._tasks:
            return
        document = self._channel.subscribe(game_path(self._key))
        connectivity = self._channel.connectivity()
        self._subscriptions = [document, connectivity]
        self._tasks = [
            asyncio.create_task(self._consume_document(document)),
            asyncio.create_task(self._consume_connectivity(connectivity)),
        ]
        self._monitor = PresenceMonitor(
            write_heartbeat=self._write_heartbeat,
            get_record=lambda: self._state,
            on_disconnected=self._handle_disconnected,
            policy=self._liveness_policy,
            config=self._presence_config,
            clock=self._clock,
        )
        self._monitor.start()

    async def close(self) -> None:
        """Stop listening and clear timers. In-flight writes are not aborted."""
        if self._monitor is not None:
            await self._monitor.stop()
        for subscription in self._subscriptions:
            await subscription.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._subscriptions = []

    async def _consume_document(self, subscription: Subscription[Any]) -> None:
        async for raw in subscription:
            await self.handle_snapshot(raw)

    async def _consume_connectivity(self, subscription: Subscription[bool]) -> None:
        async for online in subscription:
            await self.handle_connectivity(online=online)

    async def handle_snapshot(self, raw: dict[str, Any] | None) -> None:
        """Adopt a pushed document snapshot as the latest observed record."""
        if raw is None:
            if self._deleted:
                return
            self._state = None
            self._error = SessionErrorView(code=SessionErrorCode.NOT_FOUND, message="Game not found")
            await self._notify()
            return
        try:
            record = SessionRecord.from_document(raw)
        except ValidationError as e:
            self._log.warning("ignoring malformed session snapshot", error=str(e))
            return

        previous = self._state
        if previous is not None and record.last_move < previous.last_move:
            # last writer won with an older view; our local change is gone
            self._log.warning(
                "snapshot older than local view, local update was overwritten",
                snapshot_last_move=record.last_move,
                local_last_move=previous.last_move,
            )
        self._state = record
        # after the first snapshot only the connectivity stream moves the status
        if self._connection_status == ConnectionStatus.CONNECTING:
            self._connection_status = ConnectionStatus.CONNECTED
        if self._error is not None and self._error.code in _SNAPSHOT_CLEARS:
            self._error = None
        await self._notify()

    async def handle_connectivity(self, *, online: bool) -> None:
        reconnected = online and self._connection_status == ConnectionStatus.DISCONNECTED
        if online:
            self._connection_status = ConnectionStatus.CONNECTED
            if self._error is not None and self._error.code == SessionErrorCode.CONNECTIVITY_LOST:
                self._error = None
        else:
            self._connection_status = ConnectionStatus.DISCONNECTED
            self._fail(ConnectivityLostError())
        if reconnected:
            await self._restore_presence()
        await self._notify()

    async def _restore_presence(self) -> None:
        """Re-arm the disconnect hook the dropped connection consumed, then heartbeat."""
        record = self._state
        if self._key is None or self._seat is None or record is None or record.is_terminated:
            return
        try:
            await self._register_on_disconnect(self._key, self._seat)
        except SessionError as e:
            self._fail(e)
            return
        if self._monitor is not None:
            await self._monitor.beat()

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def move(self, position: int) -> bool:
        """Place our symbol at position. The board is updated optimistically and reverted on failure."""
        return await self._transition(
            lambda record, seat: machine.apply_move(record, position, seat, now=self._clock()),
            action="move",
            sync_failure_message="Failed to sync move",
        )

    async def request_play_again(self) -> bool:
        """Vote for a rematch; if the opponent already voted, the board resets."""
        return await self._transition(
            lambda record, seat: machine.request_play_again(record, seat, now=self._clock(), rng=self._rng),
            action="request_play_again",
            sync_failure_message="Failed to request play again",
        )

    async def cancel_play_again(self) -> bool:
        return await self._transition(
            machine.cancel_play_again,
            action="cancel_play_again",
            sync_failure_message="Failed to cancel play again",
        )

    async def decline_play_again(self) -> bool:
        return await self._transition(
            machine.decline_play_again,
            action="decline_play_again",
            sync_failure_message="Failed to decline play again",
        )

    async def leave(self) -> bool:
        """Leave the session for good.

        Before an opponent has joined, the session document is deleted so no
        orphaned room stays listed. Otherwise the record is terminated with a
        reason naming us, which the opponent sees.
        """
        record = self._state
        if record is None or self._seat is None or self._key is None:
            return False
        if record.is_terminated:
            await self._stop_presence()
            return True
        if not record.has_opponent:
            return await self.delete()

        updated = machine.leave_session(record, self._seat, now=self._clock())
        try:
            await self._write(updated)
        except SessionError as e:
            self._fail(SyncFailureError(f"Failed to leave game: {e.message}"))
            return False
        self._state = updated
        self._log.info("left session")
        await self._stop_presence()
        await self._notify()
        return True

    async def delete(self) -> bool:
        """Remove the session document entirely."""
        if self._key is None:
            return False
        try:
            if self._seat is not None:
                await self._channel.on_disconnect(presence_path(self._key, self._seat)).cancel()
            await self._channel.remove(game_path(self._key))
        except SessionError as e:
            self._fail(e)
            return False
        except _TRANSPORT_ERRORS as e:
            self._fail(SyncFailureError(f"Failed to delete game: {e}"))
            return False
        self._deleted = True
        self._state = None
        self._log.info("session deleted")
        await self._stop_presence()
        await self._notify()
        return True

    async def on_unload(self) -> None:
        """Last-chance offline presence write when the page goes away. Never raises."""
        if self._key is None or self._seat is None:
            return
        try:
            await self._channel.update(
                presence_path(self._key, self._seat),
                {"isOnline": False, "lastSeen": self._clock()},
            )
        except Exception:
            self._log.warning("unload presence write failed", exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        transform: Callable[[SessionRecord, Symbol], SessionRecord],
        *,
        action: str,
        sync_failure_message: str,
    ) -> bool:
        previous = self._state
        if previous is None or self._seat is None:
            self._fail(IllegalTransitionError("You are not seated in a game"))
            return False
        try:
            updated = transform(previous, self._seat)
        except SessionError as e:
            self._log.info("intent rejected", action=action, error_code=e.code, reason=e.message)
            self._fail(e)
            return False

        self._state = updated
        self._error = None
        await self._notify()
        try:
            await self._write(updated)
        except SessionError as e:
            self._log.warning("intent failed to sync", action=action, error=e.message)
            if self._state is updated:
                self._state = previous
            self._fail(SyncFailureError(sync_failure_message))
            await self._notify()
            return False
        return True

    async def _handle_disconnected(self, seat: Symbol) -> None:
        record = self._state
        if record is None or record.is_terminated:
            return
        updated = machine.leave_session(record, seat, now=self._clock(), disconnected=True)
        await self._write(updated)
        self._state = updated
        self._log.info("session terminated after presence timeout", stale_seat=seat)
        await self._notify()

    async def _write_heartbeat(self, presence: PlayerPresence) -> None:
        if self._key is None or self._seat is None:
            return
        if self._state is None or self._state.is_terminated:
            return
        await self._channel.update(
            presence_path(self._key, self._seat),
            presence.model_dump(mode="json", by_alias=True),
        )
        if self._state is not None:
            self._state = machine.record_presence(self._state, self._seat, presence)

    async def _register_on_disconnect(self, session_key: str, seat: Symbol) -> None:
        try:
            await self._channel.on_disconnect(presence_path(session_key, seat)).update(
                {"isOnline": False, "lastSeen": SERVER_TIMESTAMP},
            )
        except _TRANSPORT_ERRORS as e:
            raise SyncFailureError(f"Failed to register disconnect handler: {e}") from e

    async def _stop_presence(self) -> None:
        if self._monitor is not None:
            await self._monitor.stop()
        if self._key is not None and self._seat is not None:
            with contextlib.suppress(SessionError, *_TRANSPORT_ERRORS):
                await self._channel.on_disconnect(presence_path(self._key, self._seat)).cancel()

    async def _read(self, path: str) -> Any:  # noqa: ANN401
        try:
            return await self._channel.get(path)
        except _TRANSPORT_ERRORS as e:
            raise SyncFailureError(f"Failed to read game: {e}") from e

    async def _write(self, record: SessionRecord) -> None:
        try:
            await self._channel.set(game_path(record.id), record.to_document())
        except _TRANSPORT_ERRORS as e:
            raise SyncFailureError(f"Failed to write game: {e}") from e

    def _parse(self, raw: dict[str, Any]) -> SessionRecord:
        try:
            return SessionRecord.from_document(raw)
        except ValidationError as e:
            raise SyncFailureError("Game data is corrupt") from e

    def _bind(self, session_key: str, seat: Symbol) -> None:
        self._key = session_key
        self._seat = seat
        self._deleted = False
        self._log = self._log.bind(session_key=session_key, seat=seat)

    def _fail(self, error: SessionError) -> None:
        self._log.warning("session error", error_code=error.code, error_message=error.message)
        self._error = SessionErrorView.from_error(error)

    async def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            await self._listener(self)
        except Exception:
            self._log.exception("session listener failed")
