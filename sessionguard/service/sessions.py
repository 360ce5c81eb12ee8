from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sessionguard.logging import get_logger
from sessionguard.service.clock import Clock, SystemClock
from sessionguard.service.tokens import REFRESH_TOKEN_LIFETIME
from sessionguard.storage.cache import RecordCache
from sessionguard.storage.models import Session

logger = get_logger(__name__)

REFRESH_KEY_PREFIX = "auth:refresh:"
USER_INDEX_KEY_PREFIX = "auth:user_tokens:"


def refresh_key(token_id: str) -> str:
    return f"{REFRESH_KEY_PREFIX}{token_id}"


def user_index_key(user_id: str) -> str:
    return f"{USER_INDEX_KEY_PREFIX}{user_id}"


class SessionStore:
    """Refresh-token sessions plus the per-user index used for bulk revocation.

    A token id maps to at most one live session. ``take`` is the only way to
    consume a session during rotation: the backend removes it atomically, so
    two concurrent callers cannot both obtain it.
    """

    def __init__(
        self,
        cache: RecordCache,
        *,
        clock: Optional[Clock] = None,
        default_ttl: timedelta = REFRESH_TOKEN_LIFETIME,
    ) -> None:
        self.cache = cache
        self.clock: Clock = clock or SystemClock()
        self.default_ttl = default_ttl

    async def put(
        self, user_id: str, token_id: str, ttl: Optional[timedelta] = None
    ) -> Session:
        lifetime = ttl if ttl is not None else self.default_ttl
        now = self.clock.now()
        session = Session(
            token_id=token_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + lifetime,
        )
        await self.cache.set_indexed(
            refresh_key(token_id),
            session.to_record(),
            lifetime.total_seconds(),
            index_key=user_index_key(user_id),
            member=token_id,
        )
        return session

    async def get(self, token_id: str) -> Optional[Session]:
        if not token_id:
            return None
        record = await self.cache.get_json(refresh_key(token_id))
        return self._load(record)

    async def take(self, token_id: str) -> Optional[Session]:
        """Remove and return the session, or None if another caller got it first."""
        if not token_id:
            return None
        record = await self.cache.pop_json(refresh_key(token_id))
        session = self._load(record)
        if session is not None:
            await self.cache.index_remove(user_index_key(session.user_id), token_id)
        return session

    async def delete(self, token_id: str) -> bool:
        session = await self.take(token_id)
        return session is not None

    async def delete_all_for_user(self, user_id: str) -> int:
        index_key = user_index_key(user_id)
        members = await self.cache.index_members(index_key)
        if not members:
            return 0
        removed = await self.cache.delete_indexed(
            index_key, {member: refresh_key(member) for member in members}
        )
        logger.info(
            "sessions_revoked_for_user",
            user_id=user_id,
            indexed_count=len(members),
            revoked_count=removed,
        )
        return removed

    def _load(self, record: Optional[dict]) -> Optional[Session]:
        if record is None:
            return None
        try:
            return Session.from_record(record)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("session_record_invalid", error=str(exc))
            return None
