"""
End-to-end session flow: two players, each with its own GameSession and
sync channel, sharing one document store.
"""

import random

import pytest

from game.logic.enums import ConnectionStatus, GameMode, SessionPhase, Symbol
from game.logic.exceptions import SessionErrorCode
from game.session.manager import GameSession
from game.sync.memory import InMemorySyncChannel
from game.sync.protocol import GAMES_ROOT, game_path
from game.tests.helpers.sessions import close_all, seat_pair, settle
from lobby.rooms.listing import list_public_rooms
from lobby.rooms.reaper import SessionReaper


@pytest.fixture
async def players(alice_channel, bob_channel, presence_config, clock):
    def make(channel, name, seed):
        return GameSession(
            channel,
            name,
            GameMode.ONLINE,
            presence_config=presence_config,
            clock=clock,
            rng=random.Random(seed),
        )

    alice = make(alice_channel, "Alice", 1)
    bob = make(bob_channel, "Bob", 2)
    yield alice, bob
    await close_all(alice, bob)


async def play(seats, moves):
    """Alternate moves starting with whoever is to move."""
    for position in moves:
        mover = next(session for session in seats.values() if session.is_my_turn)
        assert await mover.move(position) is True
        await settle()


async def test_full_game_to_a_win(players):
    alice, bob = players
    seats = await seat_pair(alice, bob)

    await play(seats, [4, 0, 2, 1, 6])

    for session in (alice, bob):
        assert session.phase == SessionPhase.GAME_OVER
        assert session.state.winner == Symbol.X
        assert session.state.winning_line == (2, 4, 6)
        assert session.state.is_board_consistent is True
    assert alice.state == bob.state


async def test_draw_reaches_both_players(players):
    alice, bob = players
    seats = await seat_pair(alice, bob)

    # X O X / X O O / O X X
    await play(seats, [0, 1, 2, 4, 3, 5, 7, 6, 8])

    assert alice.state.is_draw is True
    assert bob.state.winner is None
    assert bob.phase == SessionPhase.GAME_OVER


async def test_rematch_starts_a_fresh_round(players):
    alice, bob = players
    seats = await seat_pair(alice, bob)
    await play(seats, [0, 3, 1, 4, 2])
    assert alice.state.winner == Symbol.X

    await alice.request_play_again()
    await settle()
    assert bob.opponent_requested_play_again is True
    await bob.request_play_again()
    await settle()

    assert alice.state == bob.state
    assert alice.state.board == ("",) * 9
    assert alice.state.winner is None
    assert alice.state.starting_player == alice.state.current_player
    assert sum(session.is_my_turn for session in (alice, bob)) == 1

    await play(seats, [4])
    assert bob.state.board[4] == alice.state.starting_player


async def test_public_room_is_listed_until_joined(players, store):
    alice, bob = players

    await alice.create("ROOM01")
    [room] = list_public_rooms(store.children(GAMES_ROOT))
    assert room.key == "ROOM01"
    assert room.host_name == "Alice"
    assert room.open_seat == alice.seat.opponent

    await bob.join("room01")

    assert list_public_rooms(store.children(GAMES_ROOT)) == []


async def test_terminated_session_rejects_late_joiner(players, store, presence_config, clock):
    alice, bob = players
    await seat_pair(alice, bob)
    await alice.leave()
    await settle()
    before = store.read(game_path("ABC123"))

    carol = GameSession(
        InMemorySyncChannel(store, client_id="carol"),
        "Carol",
        GameMode.ONLINE,
        presence_config=presence_config,
        clock=clock,
    )

    assert await carol.join("ABC123") is None
    assert carol.error.code == SessionErrorCode.TERMINATED
    assert carol.error.message == "Alice left the game"
    assert store.read(game_path("ABC123")) == before
    assert bob.phase == SessionPhase.TERMINATED


async def test_dropped_player_is_terminated_by_opponent(players, bob_channel, clock):
    alice, bob = players
    await seat_pair(alice, bob)

    bob_channel.simulate_disconnect()
    await settle()
    assert bob.connection_status == ConnectionStatus.DISCONNECTED
    assert alice.state.presence_of(bob.seat).is_online is False

    clock.advance(seconds=10)
    assert await alice.monitor.check() is None

    clock.advance(seconds=25)
    assert await alice.monitor.check() == bob.seat
    await settle()

    assert alice.phase == SessionPhase.TERMINATED
    assert alice.state.termination_reason == "Bob disconnected"
    assert alice.state.quitter == bob.seat


async def test_player_returning_within_window_keeps_the_game(players, bob_channel, clock):
    alice, bob = players
    await seat_pair(alice, bob)

    bob_channel.simulate_disconnect()
    await settle()
    clock.advance(seconds=20)
    bob_channel.simulate_reconnect()
    await bob.monitor.beat()
    await settle()
    clock.advance(seconds=20)

    assert await alice.monitor.check() is None
    assert alice.phase == SessionPhase.IN_PROGRESS
    assert bob.error is None


async def test_second_drop_after_reconnect_still_terminates(players, bob_channel, clock):
    alice, bob = players
    await seat_pair(alice, bob)

    bob_channel.simulate_disconnect()
    await settle()
    clock.advance(seconds=5)
    bob_channel.simulate_reconnect()
    await settle()
    assert alice.state.presence_of(bob.seat).is_online is True

    clock.advance(seconds=5)
    bob_channel.simulate_disconnect()
    await settle()
    assert alice.state.presence_of(bob.seat).is_online is False

    clock.advance(seconds=35)
    assert await alice.monitor.check() == bob.seat
    await settle()

    assert alice.phase == SessionPhase.TERMINATED
    assert alice.state.termination_reason == "Bob disconnected"


async def test_reaper_clears_finished_session(players, store, clock):
    alice, bob = players
    await seat_pair(alice, bob)
    await bob.leave()
    await settle()
    reaper = SessionReaper(
        InMemorySyncChannel(store, client_id="reaper"),
        terminated_ttl_seconds=600,
        clock=clock,
    )

    assert await reaper.reap() == []
    clock.advance(seconds=601)
    assert await reaper.reap() == ["ABC123"]
    await settle()

    assert store.read(game_path("ABC123")) is None
    assert alice.error.code == SessionErrorCode.NOT_FOUND
