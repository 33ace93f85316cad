"""Shared fixtures for lobby tests."""

import pytest

from game.sync.memory import DocumentStore, InMemorySyncChannel
from game.tests.helpers.clock import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return DocumentStore(clock=clock)


@pytest.fixture
def channel(store):
    return InMemorySyncChannel(store, client_id="lobby")
