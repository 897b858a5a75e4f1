"""In-memory registry of live connections and their sessions.

The registry never suspends: every method runs to completion on the event
loop, so registry state only changes between awaits. Code that awaits a store
call must look its session up again afterwards instead of reusing a copy it
read before the await.
"""
import json
import uuid
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    identity: Optional[str] = None
    room_id: Optional[int] = None

    def copy(self) -> "Session":
        return replace(self)


class Connection:
    """Handle for one accepted WebSocket."""

    def __init__(self, websocket, connection_id: str = None):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.closed = False

    async def send(self, event: dict):
        await self.websocket.send_text(json.dumps(event, default=str))

    def __repr__(self):
        return f"<Connection {self.connection_id[:8]}{' closed' if self.closed else ''}>"


class ConnectionRegistry:
    def __init__(self):
        self._sessions: Dict[Connection, Session] = {}
        # identity -> connections currently logged in as that identity
        self._by_identity: Dict[str, Dict[Connection, None]] = {}
        # identity -> room of its last closed session, kept until an explicit leave
        self._last_room: Dict[str, int] = {}

    def register(self, connection: Connection):
        if connection in self._sessions:
            return
        self._sessions[connection] = Session()
        logger.debug(f"Registered {connection} ({len(self._sessions)} live connections)")

    def update_session(self, connection: Connection, session: Session) -> bool:
        """Replace the session of a registered connection.

        Returns False, and stores nothing, when the connection has already
        been unregistered.
        """
        old = self._sessions.get(connection)
        if old is None:
            logger.debug(f"Ignoring session update for unregistered {connection}")
            return False
        if old.identity != session.identity:
            self._unindex(connection, old.identity)
            if session.identity is not None:
                self._by_identity.setdefault(session.identity, {})[connection] = None
        self._sessions[connection] = session.copy()
        return True

    def session_of(self, connection: Connection) -> Optional[Session]:
        session = self._sessions.get(connection)
        return session.copy() if session is not None else None

    def unregister(self, connection: Connection) -> Optional[Session]:
        connection.closed = True
        session = self._sessions.pop(connection, None)
        if session is None:
            return None
        self._unindex(connection, session.identity)
        if session.identity is not None and session.room_id is not None:
            self._last_room[session.identity] = session.room_id
        logger.debug(f"Unregistered {connection} ({len(self._sessions)} live connections)")
        return session

    def snapshot_by_room(self, room_id: int) -> List[Connection]:
        """Connections currently in room_id, as a list that later changes don't touch."""
        return [conn for conn, session in self._sessions.items() if session.room_id == room_id]

    def connections_of(self, identity: str) -> List[Connection]:
        return list(self._by_identity.get(identity, ()))

    def find_room_for_identity(self, identity: str, exclude: Connection = None) -> Optional[int]:
        """Room a reconnecting identity should land back in, if any.

        Live connections of the identity win over the remembered room of a
        closed one.
        """
        for conn in self._by_identity.get(identity, ()):
            if conn is exclude:
                continue
            room_id = self._sessions[conn].room_id
            if room_id is not None:
                return room_id
        return self._last_room.get(identity)

    def forget_room(self, identity: str):
        self._last_room.pop(identity, None)

    def clear_room(self, room_id: int) -> List[Connection]:
        """Take every session, live or remembered, out of a room that no longer exists."""
        cleared = []
        for conn, session in self._sessions.items():
            if session.room_id == room_id:
                session.room_id = None
                cleared.append(conn)
        for identity in [i for i, r in self._last_room.items() if r == room_id]:
            del self._last_room[identity]
        return cleared

    def online_count(self, room_id: int) -> int:
        return len({s.identity for s in self._sessions.values() if s.room_id == room_id})

    def connection_count(self) -> int:
        return len(self._sessions)

    def _unindex(self, connection: Connection, identity: Optional[str]):
        if identity is None:
            return
        conns = self._by_identity.get(identity)
        if conns is None:
            return
        conns.pop(connection, None)
        if not conns:
            del self._by_identity[identity]
