from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


@dataclass
class Session:
    """Refresh-token session keyed by its opaque token id."""

    token_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def to_record(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Session":
        return cls(
            token_id=str(record["token_id"]),
            user_id=str(record["user_id"]),
            created_at=_parse_ts(record["created_at"]),
            expires_at=_parse_ts(record["expires_at"]),
        )


@dataclass
class RevocationEntry:
    token_id: str
    expires_at: datetime

    def to_record(self) -> Dict[str, Any]:
        return {"token_id": self.token_id, "expires_at": self.expires_at.isoformat()}


@dataclass
class ResetToken:
    token_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def to_record(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ResetToken":
        return cls(
            token_id=str(record["token_id"]),
            user_id=str(record["user_id"]),
            created_at=_parse_ts(record["created_at"]),
            expires_at=_parse_ts(record["expires_at"]),
        )
