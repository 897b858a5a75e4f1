import pytest

from fakes import FakeConnection, FakeStore
from realtime.broadcast import BroadcastRouter
from realtime.protocol import SessionProtocol
from realtime.registry import ConnectionRegistry


@pytest.fixture
def store():
    store = FakeStore()
    store.add_user("alice")
    store.add_user("bob")
    store.add_user("carol")
    store.add_room(7, "general", created_by="alice", members=["alice", "bob", "carol"])
    store.add_room(8, "random", created_by="bob", members=["alice", "bob", "carol"])
    store.add_room(9, "private", created_by="carol", members=["carol"])
    return store


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def router(registry):
    return BroadcastRouter(registry, send_timeout=1)


@pytest.fixture
def protocol(registry, router, store):
    return SessionProtocol(registry, router, store, store, store, history_limit=50)


@pytest.fixture
def connect(protocol):
    """Open a new fake connection registered with the protocol."""
    def _connect() -> FakeConnection:
        conn = FakeConnection()
        protocol.connect(conn)
        return conn
    return _connect
