"""Redis-backed cache tests; skipped when no Redis server is reachable."""

import asyncio
import os
import uuid

import pytest
from redis import Redis
from redis.exceptions import RedisError

from sessionguard.service.clock import SystemClock
from sessionguard.service.sessions import SessionStore
from sessionguard.storage.errors import StoreUnavailable
from sessionguard.storage.redis_cache import RedisCache

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/1")


def _redis_available() -> bool:
    client = Redis.from_url(REDIS_URL, socket_connect_timeout=0.5, socket_timeout=0.5)
    try:
        return bool(client.ping())
    except (RedisError, OSError):
        return False
    finally:
        client.close()


pytestmark = pytest.mark.skipif(not _redis_available(), reason="redis not reachable")


@pytest.fixture
def prefix():
    return f"test:{uuid.uuid4().hex}:"


async def test_set_get_pop(prefix):
    cache = RedisCache(REDIS_URL)
    try:
        await cache.set_json(prefix + "k", {"a": 1}, 30)
        assert await cache.get_json(prefix + "k") == {"a": 1}
        assert await cache.exists(prefix + "k") is True
        assert await cache.pop_json(prefix + "k") == {"a": 1}
        assert await cache.pop_json(prefix + "k") is None
    finally:
        await cache.close()


async def test_short_ttl_expires(prefix):
    cache = RedisCache(REDIS_URL)
    try:
        await cache.set_json(prefix + "k", {"a": 1}, 0.05)
        await asyncio.sleep(0.2)
        assert await cache.get_json(prefix + "k") is None
    finally:
        await cache.close()


async def test_concurrent_take_single_winner(prefix):
    cache = RedisCache(REDIS_URL)
    sessions = SessionStore(cache, clock=SystemClock())
    user_id = prefix + "user"
    try:
        await sessions.put(user_id, prefix + "tok")
        results = await asyncio.gather(*(sessions.take(prefix + "tok") for _ in range(20)))
        assert sum(1 for r in results if r is not None) == 1
    finally:
        await sessions.delete_all_for_user(user_id)
        await cache.close()


async def test_bulk_delete_through_index(prefix):
    cache = RedisCache(REDIS_URL)
    sessions = SessionStore(cache, clock=SystemClock())
    user_id = prefix + "user"
    try:
        for n in range(3):
            await sessions.put(user_id, f"{prefix}tok{n}")
        assert await sessions.delete_all_for_user(user_id) == 3
        assert await sessions.get(prefix + "tok0") is None
        assert await cache.index_members(f"auth:user_tokens:{user_id}") == set()
    finally:
        await cache.close()


async def test_unreachable_server_raises_store_unavailable():
    cache = RedisCache("redis://127.0.0.1:1/0", socket_timeout=0.5)
    try:
        with pytest.raises(StoreUnavailable):
            await cache.get_json("anything")
    finally:
        await cache.close()
