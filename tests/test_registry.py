from fakes import FakeConnection
from realtime.registry import ConnectionRegistry, Session


# =============================================================================
# Lifecycle
# =============================================================================

class TestRegistryLifecycle:

    def test_register_creates_empty_session(self, registry):
        conn = FakeConnection()
        registry.register(conn)

        assert registry.session_of(conn) == Session()
        assert registry.connection_count() == 1

    def test_register_is_idempotent(self, registry):
        conn = FakeConnection()
        registry.register(conn)
        registry.update_session(conn, Session(identity="alice", room_id=7))

        registry.register(conn)

        assert registry.session_of(conn) == Session(identity="alice", room_id=7)
        assert registry.connection_count() == 1

    def test_update_session_on_unregistered_connection_is_ignored(self, registry):
        conn = FakeConnection()

        assert registry.update_session(conn, Session(identity="alice")) is False
        assert registry.session_of(conn) is None
        assert registry.connections_of("alice") == []

    def test_unregister_returns_session_and_marks_closed(self, registry):
        conn = FakeConnection()
        registry.register(conn)
        registry.update_session(conn, Session(identity="alice", room_id=7))

        session = registry.unregister(conn)

        assert session == Session(identity="alice", room_id=7)
        assert conn.closed is True
        assert registry.session_of(conn) is None
        assert registry.connections_of("alice") == []

    def test_unregister_unauthenticated_and_twice_is_safe(self, registry):
        conn = FakeConnection()
        registry.register(conn)

        assert registry.unregister(conn) == Session()
        assert registry.unregister(conn) is None

    def test_session_of_returns_a_copy(self, registry):
        conn = FakeConnection()
        registry.register(conn)

        session = registry.session_of(conn)
        session.identity = "mallory"

        assert registry.session_of(conn).identity is None


# =============================================================================
# Room snapshots
# =============================================================================

class TestSnapshotByRoom:

    def test_snapshot_only_contains_connections_in_room(self, registry):
        a, b, c = FakeConnection(), FakeConnection(), FakeConnection()
        for conn, room in ((a, 7), (b, 7), (c, 8)):
            registry.register(conn)
            registry.update_session(conn, Session(identity="u", room_id=room))

        assert set(registry.snapshot_by_room(7)) == {a, b}
        assert registry.snapshot_by_room(8) == [c]
        assert registry.snapshot_by_room(9) == []

    def test_snapshot_is_not_a_live_view(self, registry):
        a, b = FakeConnection(), FakeConnection()
        for conn in (a, b):
            registry.register(conn)
            registry.update_session(conn, Session(identity="u", room_id=7))

        snapshot = registry.snapshot_by_room(7)
        registry.unregister(a)

        assert set(snapshot) == {a, b}
        assert registry.snapshot_by_room(7) == [b]

    def test_online_count_counts_identities_once(self, registry):
        tabs = [FakeConnection(), FakeConnection()]
        for conn in tabs:
            registry.register(conn)
            registry.update_session(conn, Session(identity="alice", room_id=7))
        other = FakeConnection()
        registry.register(other)
        registry.update_session(other, Session(identity="bob", room_id=7))

        assert registry.online_count(7) == 2


# =============================================================================
# Identity index and reconnect memory
# =============================================================================

class TestIdentityIndex:

    def test_identity_index_follows_session_updates(self, registry):
        conn = FakeConnection()
        registry.register(conn)

        registry.update_session(conn, Session(identity="alice"))
        assert registry.connections_of("alice") == [conn]

        registry.update_session(conn, Session(identity="bob"))
        assert registry.connections_of("alice") == []
        assert registry.connections_of("bob") == [conn]

    def test_find_room_prefers_live_connection(self, registry):
        old, new = FakeConnection(), FakeConnection()
        registry.register(old)
        registry.update_session(old, Session(identity="alice", room_id=7))
        registry.register(new)

        assert registry.find_room_for_identity("alice", exclude=new) == 7
        assert registry.find_room_for_identity("alice", exclude=old) is None

    def test_room_is_remembered_after_close_until_forgotten(self, registry):
        conn = FakeConnection()
        registry.register(conn)
        registry.update_session(conn, Session(identity="alice", room_id=7))

        registry.unregister(conn)
        assert registry.find_room_for_identity("alice") == 7

        registry.forget_room("alice")
        assert registry.find_room_for_identity("alice") is None

    def test_closing_without_room_remembers_nothing(self):
        registry = ConnectionRegistry()
        conn = FakeConnection()
        registry.register(conn)
        registry.update_session(conn, Session(identity="alice"))

        registry.unregister(conn)

        assert registry.find_room_for_identity("alice") is None

    def test_clear_room_drops_live_and_remembered_sessions(self, registry):
        live, gone, elsewhere = FakeConnection(), FakeConnection(), FakeConnection()
        for conn, identity, room in ((live, "alice", 7), (gone, "bob", 7), (elsewhere, "carol", 8)):
            registry.register(conn)
            registry.update_session(conn, Session(identity=identity, room_id=room))
        registry.unregister(gone)

        cleared = registry.clear_room(7)

        assert cleared == [live]
        assert registry.session_of(live).room_id is None
        assert registry.session_of(elsewhere).room_id == 8
        assert registry.find_room_for_identity("bob") is None
