from __future__ import annotations

from datetime import timedelta
from typing import Optional, Union

from sessionguard.service.clock import Clock, SystemClock
from sessionguard.service.tokens import ACCESS_TOKEN_LIFETIME
from sessionguard.storage.cache import RecordCache
from sessionguard.storage.models import RevocationEntry

DENYLIST_KEY_PREFIX = "auth:access:denylist:"


def denylist_key(token_id: str) -> str:
    return f"{DENYLIST_KEY_PREFIX}{token_id}"


class RevocationList:
    """Denylist of access tokens revoked before their natural expiry.

    Entries live exactly as long as the token they block, capped at one access
    lifetime, so the list never grows beyond the set of still-valid tokens.
    """

    def __init__(
        self,
        cache: RecordCache,
        *,
        clock: Optional[Clock] = None,
        max_ttl: timedelta = ACCESS_TOKEN_LIFETIME,
    ) -> None:
        self.cache = cache
        self.clock: Clock = clock or SystemClock()
        self.max_ttl = max_ttl

    async def revoke(self, token_id: str, remaining_ttl: Union[timedelta, float]) -> bool:
        """Deny ``token_id`` for ``remaining_ttl``; returns False when nothing was stored."""
        if isinstance(remaining_ttl, timedelta):
            seconds = remaining_ttl.total_seconds()
        else:
            seconds = float(remaining_ttl)
        seconds = min(seconds, self.max_ttl.total_seconds())
        if not token_id or seconds <= 0:
            return False
        entry = RevocationEntry(
            token_id=token_id,
            expires_at=self.clock.now() + timedelta(seconds=seconds),
        )
        await self.cache.set_json(denylist_key(token_id), entry.to_record(), seconds)
        return True

    async def is_revoked(self, token_id: str) -> bool:
        if not token_id:
            return False
        return await self.cache.exists(denylist_key(token_id))
