## Redis Schema / Keys
#
# See redis_keys.py for the key templates. Users, rooms, memberships and
# messages all live in the same Redis database:
# - `user:{username}` hash holds the salted password hash and email
# - `room:meta:{id}` hash, `room:names` unique-name index, `room:index` ordering
# - `room:members:{id}` set plus `user:rooms:{username}` reverse index
# - `room:messages:{id}` list of JSON messages, appended with RPUSH so index
#   order is acceptance order
import functools
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import REDIS_HOST, REDIS_PORT, REDIS_URL, SESSION_TTL_SECONDS
from redis_keys import (
    REDIS_USER_KEY, REDIS_USER_EMAIL_KEY, REDIS_USER_ROOMS_KEY, REDIS_TOKEN_KEY,
    REDIS_ROOM_ID_COUNTER, REDIS_ROOM_KEY, REDIS_ROOM_NAMES_KEY, REDIS_ROOM_INDEX_KEY,
    REDIS_MEMBERS_KEY, REDIS_MEMBER_JOINED_KEY, REDIS_MESSAGES_KEY, REDIS_MESSAGE_ID_COUNTER,
)
from realtime.errors import StoreUnavailable
from logging_config import get_logger

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 200_000


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    """Return (hash, salt) for a password, PBKDF2-SHA256 hex encoded."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return digest.hex(), salt


def verify_password(password: str, hashed: str, salt: str) -> bool:
    candidate, _ = hash_password(password, salt)
    return hmac.compare_digest(candidate, hashed)


def store_call(func):
    """Turn redis failures into StoreUnavailable so callers deal with one error type."""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            logger.error(f"Redis call {func.__name__} failed: {e}", exc_info=True)
            raise StoreUnavailable() from e
    return wrapper


class RedisBackend:
    """Identity store, room store and message log on top of one Redis client."""

    def __init__(self, redis_client=None):
        # redis.asyncio connects lazily, so building the client here never blocks import
        self.redis_client = redis_client or redis.from_url(REDIS_URL, decode_responses=True)
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    @store_call
    async def ping(self) -> bool:
        return await self.redis_client.ping()

    async def close(self):
        await self.redis_client.aclose()

    # Identity store

    @store_call
    async def create_user(self, username: str, password: str, email: str) -> dict:
        """Create a user, raising ValueError if the username or email is taken."""
        logger.info(f"Creating user {username}")
        key = REDIS_USER_KEY.format(username=username)
        if not await self.redis_client.hsetnx(key, "username", username):
            raise ValueError("Username already exists")
        if not await self.redis_client.hsetnx(REDIS_USER_EMAIL_KEY, email, username):
            await self.redis_client.delete(key)
            raise ValueError("Email already exists")
        hashed, salt = hash_password(password)
        created_at = utc_now_iso()
        await self.redis_client.hset(key, mapping={
            "password": hashed,
            "salt": salt,
            "email": email,
            "created_at": created_at,
        })
        logger.debug(f"User {username} created")
        return {"username": username, "email": email, "created_at": created_at}

    @store_call
    async def verify_credentials(self, username: str, secret: str) -> bool:
        if not username or not secret:
            return False
        user = await self.redis_client.hgetall(REDIS_USER_KEY.format(username=username))
        if not user or "password" not in user:
            logger.debug(f"Credential check for unknown user {username}")
            return False
        return verify_password(secret, user["password"], user["salt"])

    @store_call
    async def issue_token(self, username: str) -> str:
        token = secrets.token_urlsafe(32)
        await self.redis_client.set(REDIS_TOKEN_KEY.format(token=token), username, ex=SESSION_TTL_SECONDS)
        logger.debug(f"Issued session token for {username}")
        return token

    @store_call
    async def resolve_token(self, token: str) -> Optional[str]:
        if not token:
            return None
        return await self.redis_client.get(REDIS_TOKEN_KEY.format(token=token))

    @store_call
    async def revoke_token(self, token: str) -> bool:
        return bool(await self.redis_client.delete(REDIS_TOKEN_KEY.format(token=token)))

    # Room store

    @store_call
    async def create_room(self, name: str, created_by: str) -> dict:
        """Create a room and add its founder as the first member."""
        logger.info(f"Creating room {name} for {created_by}")
        room_id = await self.redis_client.incr(REDIS_ROOM_ID_COUNTER)
        if not await self.redis_client.hsetnx(REDIS_ROOM_NAMES_KEY, name, room_id):
            raise ValueError("Room name already exists")
        room = {
            "id": room_id,
            "name": name,
            "created_by": created_by,
            "created_at": utc_now_iso(),
        }
        await self.redis_client.hset(REDIS_ROOM_KEY.format(room_id=room_id), mapping={k: str(v) for k, v in room.items()})
        await self.redis_client.zadd(REDIS_ROOM_INDEX_KEY, {room_id: room_id})
        await self.add_member(room_id, created_by)
        logger.debug(f"Room {room_id} ({name}) created")
        return room

    @store_call
    async def get_room(self, room_id: int) -> Optional[dict]:
        room_data = await self.redis_client.hgetall(REDIS_ROOM_KEY.format(room_id=room_id))
        if not room_data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        room_data["id"] = int(room_data["id"])
        return room_data

    @store_call
    async def room_exists(self, room_id: int) -> bool:
        return bool(await self.redis_client.exists(REDIS_ROOM_KEY.format(room_id=room_id)))

    @store_call
    async def list_rooms(self) -> list[dict]:
        rooms = []
        for room_id in await self.redis_client.zrange(REDIS_ROOM_INDEX_KEY, 0, -1):
            room = await self.get_room(int(room_id))
            if room is None:
                continue
            room["member_count"] = await self.member_count(room["id"])
            rooms.append(room)
        return rooms

    @store_call
    async def delete_room(self, room_id: int) -> bool:
        """Delete a room together with its memberships and messages."""
        logger.info(f"Deleting room {room_id}")
        room = await self.get_room(room_id)
        if not room:
            return False
        for username in await self.redis_client.smembers(REDIS_MEMBERS_KEY.format(room_id=room_id)):
            await self.redis_client.srem(REDIS_USER_ROOMS_KEY.format(username=username), room_id)
        await self.redis_client.delete(
            REDIS_ROOM_KEY.format(room_id=room_id),
            REDIS_MEMBERS_KEY.format(room_id=room_id),
            REDIS_MEMBER_JOINED_KEY.format(room_id=room_id),
            REDIS_MESSAGES_KEY.format(room_id=room_id),
        )
        await self.redis_client.hdel(REDIS_ROOM_NAMES_KEY, room["name"])
        await self.redis_client.zrem(REDIS_ROOM_INDEX_KEY, room_id)
        return True

    @store_call
    async def is_member(self, room_id: int, username: str) -> bool:
        return bool(await self.redis_client.sismember(REDIS_MEMBERS_KEY.format(room_id=room_id), username))

    @store_call
    async def add_member(self, room_id: int, username: str) -> bool:
        """Returns False when the user was already a member."""
        added = await self.redis_client.sadd(REDIS_MEMBERS_KEY.format(room_id=room_id), username)
        if added:
            await self.redis_client.hset(REDIS_MEMBER_JOINED_KEY.format(room_id=room_id), username, utc_now_iso())
            await self.redis_client.sadd(REDIS_USER_ROOMS_KEY.format(username=username), room_id)
            logger.debug(f"User {username} added to room {room_id}")
        else:
            logger.debug(f"User {username} already a member of room {room_id}")
        return bool(added)

    @store_call
    async def remove_member(self, room_id: int, username: str) -> bool:
        removed = await self.redis_client.srem(REDIS_MEMBERS_KEY.format(room_id=room_id), username)
        await self.redis_client.hdel(REDIS_MEMBER_JOINED_KEY.format(room_id=room_id), username)
        await self.redis_client.srem(REDIS_USER_ROOMS_KEY.format(username=username), room_id)
        logger.debug(f"User {username} removed from room {room_id}: {bool(removed)}")
        return bool(removed)

    @store_call
    async def member_count(self, room_id: int) -> int:
        return await self.redis_client.scard(REDIS_MEMBERS_KEY.format(room_id=room_id))

    @store_call
    async def members(self, room_id: int) -> set[str]:
        return await self.redis_client.smembers(REDIS_MEMBERS_KEY.format(room_id=room_id))

    @store_call
    async def rooms_of(self, username: str) -> set[int]:
        return {int(r) for r in await self.redis_client.smembers(REDIS_USER_ROOMS_KEY.format(username=username))}

    # Message log

    @store_call
    async def append_message(self, room_id: int, sender: str, content: str, kind: str, extra: Optional[dict] = None) -> dict:
        message = {
            "id": await self.redis_client.incr(REDIS_MESSAGE_ID_COUNTER),
            "room_id": room_id,
            "sender": sender,
            "content": content,
            "kind": kind,
            "created_at": utc_now_iso(),
            "extra": extra or {},
        }
        await self.redis_client.rpush(REDIS_MESSAGES_KEY.format(room_id=room_id), json.dumps(message))
        logger.debug(f"Appended message {message['id']} ({kind}) from {sender} to room {room_id}")
        return message

    @store_call
    async def recent_messages(self, room_id: int, limit: int) -> list[dict]:
        """Last `limit` messages of a room, oldest first."""
        if limit <= 0:
            return []
        raw = await self.redis_client.lrange(REDIS_MESSAGES_KEY.format(room_id=room_id), -limit, -1)
        messages = []
        for item in raw:
            try:
                messages.append(json.loads(item))
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Skipping unreadable message in room {room_id}: {item!r}")
        return messages


redis_backend = RedisBackend()
