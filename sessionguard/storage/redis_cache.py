from __future__ import annotations

import contextlib
import json
from typing import Any, Dict, Iterator, Optional, Set

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from sessionguard.storage.errors import StoreUnavailable


def _ttl_ms(ttl_seconds: float) -> int:
    # Redis rejects non-positive expiries; callers filter those out first
    return max(1, int(ttl_seconds * 1000))


class RedisCache:
    """Thin Redis wrapper for TTL-bound auth records and per-user indexes."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Atomic GET + DEL: only one caller can ever observe a given value
    _POP_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if value then
  redis.call('DEL', KEYS[1])
end
return value
"""

    # Record write + index membership in one step; the index TTL only ever grows
    # so it outlives every member it tracks
    _SET_INDEXED_SCRIPT = """
redis.call('SET', KEYS[1], ARGV[1], 'PX', ARGV[2])
redis.call('SADD', KEYS[2], ARGV[3])
local current = redis.call('PTTL', KEYS[2])
if current < tonumber(ARGV[2]) then
  redis.call('PEXPIRE', KEYS[2], ARGV[2])
end
return 1
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._pop = self.client.register_script(self._POP_SCRIPT)
        self._set_indexed = self.client.register_script(self._SET_INDEXED_SCRIPT)

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            raise StoreUnavailable("redis", operation, exc) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async client is not bound to a temporary loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def set_json(self, key: str, payload: Dict[str, Any], ttl_seconds: float) -> None:
        with self._guard("set"):
            await self.client.set(key, json.dumps(payload), px=_ttl_ms(ttl_seconds))

    async def set_indexed(
        self,
        key: str,
        payload: Dict[str, Any],
        ttl_seconds: float,
        *,
        index_key: str,
        member: str,
    ) -> None:
        with self._guard("set_indexed"):
            await self._set_indexed(
                keys=[key, index_key],
                args=[json.dumps(payload), _ttl_ms(ttl_seconds), member],
            )

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        with self._guard("get"):
            raw = await self.client.get(key)
        return _decode(raw)

    async def pop_json(self, key: str) -> Optional[Dict[str, Any]]:
        with self._guard("pop"):
            raw = await self._pop(keys=[key])
        return _decode(raw)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._guard("delete"):
            return int(await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        with self._guard("exists"):
            return bool(await self.client.exists(key))

    async def index_members(self, index_key: str) -> Set[str]:
        with self._guard("index_members"):
            return set(await self.client.smembers(index_key))

    async def index_remove(self, index_key: str, member: str) -> None:
        with self._guard("index_remove"):
            await self.client.srem(index_key, member)

    async def delete_indexed(self, index_key: str, entries: Dict[str, str]) -> int:
        """Delete the records in ``entries`` (member -> key) and unregister them.

        Only the given members leave the index, so a member added concurrently
        survives. Returns how many records still existed.
        """
        if not entries:
            return 0
        with self._guard("delete_indexed"):
            pipe = self.client.pipeline(transaction=True)
            for key in entries.values():
                pipe.delete(key)
            pipe.srem(index_key, *entries.keys())
            results = await pipe.execute()
        return sum(int(r) for r in results[:-1])

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


def _decode(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode()
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None
