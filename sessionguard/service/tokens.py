"""Stateless access-token signing and verification.

Access tokens are HS256 JWTs carrying the user's id, email and name. They are
verified from the token alone (signature, issuer, type, expiry), so a stolen
but unexpired token stays valid until it expires or is put on the
revocation list. Revocation identifies a token by the SHA-256 of its exact
string.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sessionguard.logging import get_logger
from sessionguard.service.clock import Clock, SystemClock
from sessionguard.storage.models import User

logger = get_logger(__name__)

ACCESS_TOKEN_LIFETIME = timedelta(minutes=15)
REFRESH_TOKEN_LIFETIME = timedelta(days=7)

_ALGORITHM = "HS256"
_TOKEN_TYPE = "access"


def generate_token_id() -> str:
    """Opaque identifier for refresh and reset tokens (256 bits, CSPRNG)."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class AccessClaims:
    subject: str
    email: str
    name: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AccessToken:
    token: str
    claims: AccessClaims


class TokenSigner:
    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "sessionguard",
        clock: Optional[Clock] = None,
        access_lifetime: timedelta = ACCESS_TOKEN_LIFETIME,
        refresh_lifetime: timedelta = REFRESH_TOKEN_LIFETIME,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret is required")
        self._secret = secret.encode()
        self.issuer = issuer
        self.clock: Clock = clock or SystemClock()
        self._access_lifetime = access_lifetime
        self._refresh_lifetime = refresh_lifetime

    def access_token_lifetime(self) -> timedelta:
        return self._access_lifetime

    def refresh_token_lifetime(self) -> timedelta:
        return self._refresh_lifetime

    def access_token_max_age(self) -> int:
        """Access lifetime in whole seconds, for cookie ``max_age``."""
        return int(self._access_lifetime.total_seconds())

    def refresh_token_max_age(self) -> int:
        return int(self._refresh_lifetime.total_seconds())

    @staticmethod
    def token_id(token: str) -> str:
        """Revocation identity of an access token."""
        return hashlib.sha256(token.encode()).hexdigest()

    def remaining_lifetime(self, claims: AccessClaims) -> timedelta:
        remaining = claims.expires_at - self.clock.now()
        return max(remaining, timedelta(0))

    def issue_access_token(self, user: User) -> AccessToken:
        # Whole seconds so the embedded claims and AccessClaims agree exactly
        issued_at = self.clock.now().replace(microsecond=0)
        expires_at = issued_at + self._access_lifetime
        payload = {
            "iss": self.issuer,
            "typ": _TOKEN_TYPE,
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Distinguishes tokens minted for the same user within one second
            "jti": secrets.token_urlsafe(12),
        }
        claims = AccessClaims(
            subject=user.id,
            email=user.email,
            name=user.name,
            issued_at=issued_at,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
        return AccessToken(token=self._encode_jwt(payload), claims=claims)

    def verify_access_token(self, token: Optional[str]) -> Optional[AccessClaims]:
        """Return the claims of a valid token, or None. Never raises."""
        if not token or not isinstance(token, str):
            return None
        payload = self._decode_jwt(token)
        if payload is None:
            return None
        if payload.get("iss") != self.issuer or payload.get("typ") != _TOKEN_TYPE:
            return None
        try:
            subject = str(payload["sub"])
            issued_at = datetime.fromtimestamp(float(payload.get("iat", 0)), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError, OSError):
            return None
        if expires_at <= self.clock.now():
            return None
        return AccessClaims(
            subject=subject,
            email=str(payload.get("email", "")),
            name=str(payload.get("name", "")),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": _ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.debug("jwt_header_decode_failed")
            return None
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != _ALGORITHM:
            logger.warning("jwt_invalid_algorithm", alg=alg)
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        return payload if isinstance(payload, dict) else None
