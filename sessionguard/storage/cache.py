from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Set


class RecordCache(Protocol):
    """TTL-bound JSON record store shared by the session, revocation and reset stores.

    Implemented by ``RedisCache`` and the in-process ``MemoryCache``. Backends
    raise ``StoreUnavailable`` when they cannot be reached.
    """

    async def set_json(self, key: str, payload: Dict[str, Any], ttl_seconds: float) -> None: ...

    async def set_indexed(
        self,
        key: str,
        payload: Dict[str, Any],
        ttl_seconds: float,
        *,
        index_key: str,
        member: str,
    ) -> None: ...

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def pop_json(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def index_members(self, index_key: str) -> Set[str]: ...

    async def index_remove(self, index_key: str, member: str) -> None: ...

    async def delete_indexed(self, index_key: str, entries: Dict[str, str]) -> int: ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...
