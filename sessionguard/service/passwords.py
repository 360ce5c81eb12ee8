from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionguard.logging import get_logger

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing with a timing-equalization path for unknown accounts."""

    def __init__(self, **params: int) -> None:
        # params are argon2 cost settings (time_cost, memory_cost, parallelism)
        self._hasher = _Argon2Hasher(type=Type.ID, **params)
        # Same cost parameters as real hashes, so a dummy check takes as long
        self._dummy_hash = self._hasher.hash("sessionguard_timing_dummy")

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: Optional[str], password: str) -> bool:
        if not password_hash:
            self.verify_dummy(password)
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unverifiable")
            return False

    def verify_dummy(self, password: str) -> None:
        """Spend one full verification on a fixed hash; the result is discarded."""
        try:
            self._hasher.verify(self._dummy_hash, password)
        except VerifyMismatchError:
            pass

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHash:
            return False
