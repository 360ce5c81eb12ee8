from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set, Tuple

from sessionguard.logging import get_logger
from sessionguard.service.clock import Clock, SystemClock
from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.models import User


class MemoryCache:
    """In-process stand-in for ``RedisCache`` with the same keyspace semantics.

    Expiry is lazy and driven by the injected clock. Every operation runs under
    one lock, which gives ``pop_json`` the same at-most-once guarantee as the
    Lua script on Redis, but only within a single process.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self._records: Dict[str, Tuple[Dict[str, Any], datetime]] = {}
        self._indexes: Dict[str, Tuple[Set[str], datetime]] = {}
        # RLock so nested helpers can re-acquire within the same thread
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def _expired(self, expires_at: datetime) -> bool:
        return expires_at <= self.clock.now()

    def _live_record(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._records.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._expired(expires_at):
            self._records.pop(key, None)
            return None
        return payload

    def _live_index(self, index_key: str) -> Set[str]:
        entry = self._indexes.get(index_key)
        if entry is None:
            return set()
        members, expires_at = entry
        if self._expired(expires_at):
            self._indexes.pop(index_key, None)
            return set()
        return members

    async def set_json(self, key: str, payload: Dict[str, Any], ttl_seconds: float) -> None:
        expires_at = self.clock.now() + timedelta(seconds=ttl_seconds)
        with self._data_lock:
            self._records[key] = (copy.deepcopy(payload), expires_at)

    async def set_indexed(
        self,
        key: str,
        payload: Dict[str, Any],
        ttl_seconds: float,
        *,
        index_key: str,
        member: str,
    ) -> None:
        expires_at = self.clock.now() + timedelta(seconds=ttl_seconds)
        with self._data_lock:
            self._records[key] = (copy.deepcopy(payload), expires_at)
            members = self._live_index(index_key)
            current = self._indexes.get(index_key)
            index_expiry = expires_at
            if current is not None and current[1] > expires_at:
                index_expiry = current[1]
            members.add(member)
            self._indexes[index_key] = (members, index_expiry)

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        with self._data_lock:
            payload = self._live_record(key)
            return copy.deepcopy(payload) if payload is not None else None

    async def pop_json(self, key: str) -> Optional[Dict[str, Any]]:
        with self._data_lock:
            payload = self._live_record(key)
            if payload is None:
                return None
            self._records.pop(key, None)
            return payload

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._data_lock:
            for key in keys:
                if self._live_record(key) is not None:
                    removed += 1
                self._records.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        with self._data_lock:
            return self._live_record(key) is not None

    async def index_members(self, index_key: str) -> Set[str]:
        with self._data_lock:
            return set(self._live_index(index_key))

    async def index_remove(self, index_key: str, member: str) -> None:
        with self._data_lock:
            members = self._live_index(index_key)
            members.discard(member)
            if not members:
                self._indexes.pop(index_key, None)

    async def delete_indexed(self, index_key: str, entries: Dict[str, str]) -> int:
        if not entries:
            return 0
        with self._data_lock:
            removed = await self.delete(*entries.values())
            members = self._live_index(index_key)
            members.difference_update(entries.keys())
            if not members:
                self._indexes.pop(index_key, None)
        return removed

    async def close(self) -> None:
        with self._data_lock:
            self._records.clear()
            self._indexes.clear()


class MemoryUserDirectory:
    """In-memory user directory for development and tests."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.logger = get_logger(__name__)
        self.clock: Clock = clock or SystemClock()
        self.users: Dict[str, User] = {}
        self._data_lock = threading.RLock()

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def create_user(self, email: str, name: str, password_hash: str) -> User:
        normalized = self._normalize_email(email)
        with self._data_lock:
            if any(u.email == normalized for u in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            now = self.clock.now()
            user = User(
                id=str(uuid.uuid4()),
                email=normalized,
                name=name,
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            return copy.copy(user)

    def find_user_by_email(self, email: str) -> Optional[User]:
        normalized = self._normalize_email(email)
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == normalized), None)
            return copy.copy(user) if user else None

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return copy.copy(user) if user else None

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                self.logger.warning("set_password_hash_missing_user", user_id=user_id)
                return
            user.password_hash = password_hash
            user.updated_at = self.clock.now()

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            return self.users.pop(user_id, None) is not None

    def close(self) -> None:
        return None
