from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sessionguard.logging import get_logger
from sessionguard.service.clock import Clock, SystemClock
from sessionguard.service.tokens import generate_token_id
from sessionguard.storage.cache import RecordCache
from sessionguard.storage.models import ResetToken

logger = get_logger(__name__)

RESET_KEY_PREFIX = "auth:reset:"
RESET_TOKEN_LIFETIME = timedelta(minutes=15)


def reset_key(token_id: str) -> str:
    return f"{RESET_KEY_PREFIX}{token_id}"


class ResetTokenStore:
    """Single-use password-reset tokens.

    ``redeem`` only looks a token up; the caller consumes it once the password
    change has been applied, so a failed change leaves the token usable.
    """

    def __init__(
        self,
        cache: RecordCache,
        *,
        clock: Optional[Clock] = None,
        default_ttl: timedelta = RESET_TOKEN_LIFETIME,
    ) -> None:
        self.cache = cache
        self.clock: Clock = clock or SystemClock()
        self.default_ttl = default_ttl

    async def issue(self, user_id: str, ttl: Optional[timedelta] = None) -> str:
        lifetime = ttl if ttl is not None else self.default_ttl
        now = self.clock.now()
        token = ResetToken(
            token_id=generate_token_id(),
            user_id=user_id,
            created_at=now,
            expires_at=now + lifetime,
        )
        await self.cache.set_json(
            reset_key(token.token_id), token.to_record(), lifetime.total_seconds()
        )
        return token.token_id

    async def redeem(self, token_id: str) -> Optional[str]:
        """User id the token was issued for, or None if unknown, expired or used."""
        if not token_id:
            return None
        record = await self.cache.get_json(reset_key(token_id))
        if record is None:
            return None
        try:
            return ResetToken.from_record(record).user_id
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("reset_token_record_invalid", error=str(exc))
            return None

    async def consume(self, token_id: str) -> bool:
        if not token_id:
            return False
        return await self.cache.delete(reset_key(token_id)) > 0
