import random

import pytest

from game.messaging.router import ChannelRouter
from game.session.presence import PresenceConfig
from game.sync.memory import DocumentStore, InMemorySyncChannel
from game.tests.helpers.clock import FakeClock
from game.tests.mocks.connection import MockConnection


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return DocumentStore(clock=clock)


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
def alice_channel(store):
    return InMemorySyncChannel(store, client_id="alice")


@pytest.fixture
def bob_channel(store):
    return InMemorySyncChannel(store, client_id="bob")


@pytest.fixture
def presence_config():
    # Timer loops are driven by hand in tests; long intervals keep them idle.
    return PresenceConfig(heartbeat_interval_seconds=3600, staleness_check_interval_seconds=3600)


@pytest.fixture
def router(store):
    return ChannelRouter(store)


@pytest.fixture
def mock_connection():
    return MockConnection()
