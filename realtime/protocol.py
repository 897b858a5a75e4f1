"""Per-connection chat protocol.

A connection moves through three states derived from its session:

    UNAUTHENTICATED --login--> AUTHENTICATED --join_room--> ROOM_JOINED
                                     ^                          |
                                     +-------leave_room---------+

``join_room`` from ROOM_JOINED switches rooms (leave + join) and ``login`` is
accepted in any state. Each transition that awaits a store re-reads the
session afterwards, because the connection may have closed in the meantime.
"""
import asyncio
import json
from collections import defaultdict
from enum import Enum
from typing import Dict, Optional

from pydantic import ValidationError

from constants import HISTORY_LIMIT
from realtime.broadcast import BroadcastRouter
from realtime.errors import ChatError, AuthFailure, NotLoggedIn, NoRoom, NotMember, ProtocolError
from realtime.registry import Connection, ConnectionRegistry, Session
from schemas.events import (
    INBOUND_TYPES, ContentEvent, JoinRoomEvent, LeaveRoomEvent, LoginEvent, inbound_event_adapter,
)
from logging_config import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    ROOM_JOINED = "room_joined"


def state_of(session: Session) -> SessionState:
    if session.identity is None:
        return SessionState.UNAUTHENTICATED
    if session.room_id is None:
        return SessionState.AUTHENTICATED
    return SessionState.ROOM_JOINED


def parse_event(raw: str):
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        raise ProtocolError("Invalid message format")
    if not isinstance(data, dict) or "type" not in data:
        raise ProtocolError("Invalid message format")
    if data["type"] not in INBOUND_TYPES:
        raise ProtocolError(f"Unknown message type: {data['type']}")
    try:
        return inbound_event_adapter.validate_python(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"][1:]) or data["type"]
        raise ProtocolError(f"Invalid {data['type']} message: {field}: {error['msg']}")


def system_event(content: str, **fields) -> dict:
    return {"type": "system", "content": content, **fields}


def message_event(message: dict) -> dict:
    """Wire form of a persisted message, used for live fan-out and history replay."""
    return {
        "type": message["kind"],
        "username": message["sender"],
        "roomId": message["room_id"],
        "timestamp": message["created_at"],
        "content": message["content"],
        **message.get("extra", {}),
    }


class SessionProtocol:
    def __init__(self, registry: ConnectionRegistry, router: BroadcastRouter,
                 identity_store, room_store, message_log, history_limit: int = HISTORY_LIMIT):
        self.registry = registry
        self.router = router
        self.identity_store = identity_store
        self.room_store = room_store
        self.message_log = message_log
        self.history_limit = history_limit
        # Serializes everything fanned out to a room so members see one order
        self._room_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def connect(self, connection: Connection):
        self.registry.register(connection)

    async def disconnect(self, connection: Connection):
        session = self.registry.unregister(connection)
        if session is None:
            return
        logger.info(f"{connection} closed (identity={session.identity}, room={session.room_id})")
        if session.identity is not None and session.room_id is not None:
            await self._publish(system_event(f"{session.identity} left the chat", roomId=session.room_id))

    async def handle(self, connection: Connection, raw: str):
        """Process one inbound frame.

        A ChatError only fails this frame: it is reported to the sender and the
        session is left as it was.
        """
        try:
            event = parse_event(raw)
            await self.dispatch(connection, event)
        except ChatError as e:
            logger.info(f"Rejected frame from {connection}: {type(e).__name__}: {e.content}")
            await self.router.send_direct(connection, e.to_event())

    async def dispatch(self, connection: Connection, event):
        if isinstance(event, LoginEvent):
            return await self.login(connection, event.username, event.secret)
        if isinstance(event, JoinRoomEvent):
            return await self.join_room(connection, event.room_id)
        if isinstance(event, LeaveRoomEvent):
            return await self.leave_room(connection)
        if isinstance(event, ContentEvent):
            return await self.post_message(connection, event)
        raise ProtocolError(f"Unknown message type: {getattr(event, 'type', None)}")

    async def login(self, connection: Connection, username: str, secret: str) -> Optional[Session]:
        if not await self.identity_store.verify_credentials(username, secret):
            raise AuthFailure()

        session = self.registry.session_of(connection)
        if session is None:
            logger.debug(f"{connection} closed during login of {username}")
            return None

        # Identity, not connection, is the reconnection key: a user who dropped
        # out of a room comes back into it without joining again. The inherited
        # room is not re-checked against the room store.
        current_room = session.room_id if session.identity == username else None
        room_id = current_room if current_room is not None else self.registry.find_room_for_identity(username, exclude=connection)

        session = Session(identity=username, room_id=room_id)
        self.registry.update_session(connection, session)
        self.registry.forget_room(username)
        logger.info(f"{connection} logged in as {username} (room={room_id})")

        await self.router.send_direct(connection, system_event(f"Welcome, {username}!"))
        if room_id is not None and room_id != current_room:
            await self.router.send_direct(connection, system_event(f"Reconnected to room {room_id}", roomId=room_id))
        return session

    async def join_room(self, connection: Connection, room_id: int) -> Optional[Session]:
        session = self._session(connection)
        if session.identity is None:
            raise NotLoggedIn()
        identity = session.identity

        if not await self.room_store.is_member(room_id, identity):
            raise NotMember()
        room = await self.room_store.get_room(room_id)
        if room is None:
            raise NotMember()

        # Held from the history fetch to the end of the replay, so a message
        # posted meanwhile reaches the joiner once, after the history
        async with self._room_locks[room_id]:
            history = await self.message_log.recent_messages(room_id, self.history_limit)

            session = self.registry.session_of(connection)
            if session is None or session.identity != identity:
                logger.debug(f"{connection} changed while joining room {room_id}, dropping join")
                return None

            previous_room = session.room_id
            session.room_id = room_id
            self.registry.update_session(connection, session)
            logger.info(f"{identity} joined room {room_id} on {connection}")

            await self.router.send_direct(
                connection, system_event(f"Joined room {room['name']}", roomId=room_id, roomName=room["name"])
            )
            for message in history:
                await self.router.send_direct(connection, message_event(message))

            if previous_room != room_id:
                await self.router.broadcast(
                    system_event(f"{identity} joined the room", roomId=room_id), exclude=connection
                )

        if previous_room is not None and previous_room != room_id:
            await self._publish(system_event(f"{identity} left the room", roomId=previous_room))
        return session

    async def leave_room(self, connection: Connection) -> Session:
        session = self._session(connection)
        if session.room_id is None:
            raise NoRoom()
        room_id = session.room_id

        session.room_id = None
        self.registry.update_session(connection, session)
        self.registry.forget_room(session.identity)
        logger.info(f"{session.identity} left room {room_id} on {connection}")

        await self.router.send_direct(connection, system_event("You left the room", roomId=room_id))
        await self._publish(system_event(f"{session.identity} left the room", roomId=room_id))
        return session

    async def post_message(self, connection: Connection, event: ContentEvent) -> dict:
        session = self._session(connection)
        if session.identity is None:
            raise NotLoggedIn()
        if session.room_id is None:
            raise NoRoom()
        identity, room_id = session.identity, session.room_id

        async with self._room_locks[room_id]:
            # Checked under the lock: membership may have been revoked, or the
            # room deleted, since the join or while waiting for the lock
            if not await self.room_store.is_member(room_id, identity):
                raise NotMember()
            message = await self.message_log.append_message(
                room_id, identity, event.content, event.type, event.extra_fields()
            )
            outbound = message_event(message)
            await self.router.broadcast(outbound, exclude=connection)
        return outbound

    async def evict_room(self, room_id: int, content: str):
        """Tell everyone in a room it is gone and drop it from their sessions."""
        await self._publish(system_event(content, roomId=room_id))
        cleared = self.registry.clear_room(room_id)
        self._room_locks.pop(room_id, None)
        logger.info(f"Evicted {len(cleared)} connections from room {room_id}")
        return cleared

    def _session(self, connection: Connection) -> Session:
        if not connection.closed:
            self.registry.register(connection)
        session = self.registry.session_of(connection)
        if session is None:
            raise NotLoggedIn()
        return session

    async def _publish(self, event: dict, exclude: Optional[Connection] = None) -> int:
        async with self._room_locks[event["roomId"]]:
            return await self.router.broadcast(event, exclude=exclude)
