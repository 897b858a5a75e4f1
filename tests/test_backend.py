import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

import backend as backend_module
from backend import RedisBackend, hash_password, verify_password
from realtime.errors import StoreUnavailable


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def backend(client):
    return RedisBackend(redis_client=client)


class TestClientConfig:

    def test_default_client_is_built_from_redis_url(self, monkeypatch):
        calls = []
        monkeypatch.setattr(backend_module, "REDIS_URL", "redis://:pw@cache:6380/2")
        monkeypatch.setattr(backend_module.redis, "from_url", lambda url, **kwargs: calls.append((url, kwargs)) or "client")

        assert RedisBackend().redis_client == "client"
        assert calls == [("redis://:pw@cache:6380/2", {"decode_responses": True})]


class TestPasswords:

    def test_hash_and_verify(self):
        hashed, salt = hash_password("secret123")
        assert verify_password("secret123", hashed, salt)
        assert not verify_password("secret124", hashed, salt)

    def test_salt_changes_hash(self):
        assert hash_password("secret123")[0] != hash_password("secret123")[0]


class TestIdentityStore:

    @pytest.mark.asyncio
    async def test_unknown_user(self, backend, client):
        client.hgetall.return_value = {}
        assert await backend.verify_credentials("ghost", "secret123") is False

    @pytest.mark.asyncio
    async def test_known_user(self, backend, client):
        hashed, salt = hash_password("secret123")
        client.hgetall.return_value = {"username": "alice", "password": hashed, "salt": salt}

        assert await backend.verify_credentials("alice", "secret123") is True
        assert await backend.verify_credentials("alice", "nope") is False
        client.hgetall.assert_awaited_with("user:alice")

    @pytest.mark.asyncio
    async def test_empty_secret_skips_lookup(self, backend, client):
        assert await backend.verify_credentials("alice", "") is False
        client.hgetall.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_username(self, backend, client):
        client.hsetnx.return_value = False
        with pytest.raises(ValueError, match="Username already exists"):
            await backend.create_user("alice", "secret123", "alice@example.com")

    @pytest.mark.asyncio
    async def test_duplicate_email_rolls_back_user(self, backend, client):
        client.hsetnx.side_effect = [True, False]
        with pytest.raises(ValueError, match="Email already exists"):
            await backend.create_user("alice", "secret123", "taken@example.com")
        client.delete.assert_awaited_once_with("user:alice")

    @pytest.mark.asyncio
    async def test_issue_token_sets_ttl(self, backend, client):
        token = await backend.issue_token("alice")
        key, value = client.set.await_args.args
        assert key == f"auth:token:{token}"
        assert value == "alice"
        assert client.set.await_args.kwargs["ex"] > 0


class TestRoomStore:

    @pytest.mark.asyncio
    async def test_create_room_adds_founder(self, backend, client):
        client.incr.return_value = 7
        client.hsetnx.return_value = True
        client.sadd.return_value = 1

        room = await backend.create_room("general", "alice")

        assert room["id"] == 7
        assert room["created_by"] == "alice"
        client.zadd.assert_awaited_once_with("room:index", {7: 7})
        client.sadd.assert_any_await("room:members:7", "alice")
        client.sadd.assert_any_await("user:rooms:alice", 7)

    @pytest.mark.asyncio
    async def test_create_room_with_taken_name(self, backend, client):
        client.incr.return_value = 8
        client.hsetnx.return_value = False
        with pytest.raises(ValueError, match="Room name already exists"):
            await backend.create_room("general", "bob")
        client.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_room_converts_id(self, backend, client):
        client.hgetall.return_value = {"id": "7", "name": "general", "created_by": "alice", "created_at": "t"}
        room = await backend.get_room(7)
        assert room["id"] == 7

    @pytest.mark.asyncio
    async def test_get_missing_room(self, backend, client):
        client.hgetall.return_value = {}
        assert await backend.get_room(7) is None

    @pytest.mark.asyncio
    async def test_add_existing_member(self, backend, client):
        client.sadd.return_value = 0
        assert await backend.add_member(7, "alice") is False
        client.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_room_cascades(self, backend, client):
        client.hgetall.return_value = {"id": "7", "name": "general", "created_by": "alice", "created_at": "t"}
        client.smembers.return_value = {"alice"}

        assert await backend.delete_room(7) is True

        client.srem.assert_awaited_once_with("user:rooms:alice", 7)
        client.delete.assert_awaited_once_with(
            "room:meta:7", "room:members:7", "room:joined:7", "room:messages:7"
        )
        client.hdel.assert_awaited_once_with("room:names", "general")

    @pytest.mark.asyncio
    async def test_redis_failure_becomes_store_unavailable(self, backend, client):
        client.sismember.side_effect = RedisConnectionError("connection refused")
        with pytest.raises(StoreUnavailable):
            await backend.is_member(7, "alice")


class TestMessageLog:

    @pytest.mark.asyncio
    async def test_append_message(self, backend, client):
        client.incr.return_value = 12

        message = await backend.append_message(7, "alice", "hi", "message")

        assert message["id"] == 12
        key, payload = client.rpush.await_args.args
        assert key == "room:messages:7"
        assert json.loads(payload) == message
        assert message["extra"] == {}

    @pytest.mark.asyncio
    async def test_recent_messages_reads_tail_and_skips_garbage(self, backend, client):
        first = {"id": 1, "room_id": 7, "sender": "a", "content": "one", "kind": "message", "created_at": "1", "extra": {}}
        second = dict(first, id=2, content="two", created_at="2")
        client.lrange.return_value = [json.dumps(first), "{not json", json.dumps(second)]

        messages = await backend.recent_messages(7, 50)

        assert [m["content"] for m in messages] == ["one", "two"]
        client.lrange.assert_awaited_once_with("room:messages:7", -50, -1)

    @pytest.mark.asyncio
    async def test_recent_messages_zero_limit(self, backend, client):
        assert await backend.recent_messages(7, 0) == []
        client.lrange.assert_not_awaited()
