from __future__ import annotations

import asyncio
import contextlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Protocol, Set

from sessionguard.logging import email_fingerprint, get_logger
from sessionguard.service.errors import (
    AuthFailure,
    ConflictError,
    DependencyFailure,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from sessionguard.service.passwords import PasswordHasher
from sessionguard.service.reset_tokens import ResetTokenStore
from sessionguard.service.revocation import RevocationList
from sessionguard.service.sessions import SessionStore
from sessionguard.service.tokens import AccessClaims, TokenSigner, generate_token_id
from sessionguard.storage.errors import ConstraintViolation, StoreUnavailable
from sessionguard.storage.models import User

logger = get_logger(__name__)

MAX_PASSWORD_LENGTH = 128
MAX_NAME_LENGTH = 100
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UserDirectory(Protocol):
    def find_user_by_email(self, email: str) -> Optional[User]: ...

    def find_user_by_id(self, user_id: str) -> Optional[User]: ...

    def set_password_hash(self, user_id: str, password_hash: str) -> None: ...

    def create_user(self, email: str, name: str, password_hash: str) -> User: ...


class Notifier(Protocol):
    def send_reset_message(self, email: str, token: str) -> bool: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    user: User


class SessionManager:
    """Orchestrates login, refresh rotation, logout and password reset.

    The manager holds no locks of its own. Exclusivity of a refresh rotation
    comes from ``SessionStore.take``; everything else is a single store call
    or tolerates interleaving. Backend outages surface as
    ``DependencyFailure`` and never as an authentication failure.
    """

    def __init__(
        self,
        *,
        signer: TokenSigner,
        sessions: SessionStore,
        revocations: RevocationList,
        reset_tokens: ResetTokenStore,
        directory: UserDirectory,
        hasher: Optional[PasswordHasher] = None,
        notifier: Optional[Notifier] = None,
        min_password_length: int = 8,
        allow_registration: bool = True,
    ) -> None:
        self.signer = signer
        self.sessions = sessions
        self.revocations = revocations
        self.reset_tokens = reset_tokens
        self.directory = directory
        self.hasher = hasher or PasswordHasher()
        self.notifier = notifier
        self.min_password_length = min_password_length
        self.allow_registration = allow_registration
        self._pending_notifications: Set[asyncio.Task] = set()

    @contextlib.contextmanager
    def _dependency(self, operation: str) -> Iterator[None]:
        try:
            yield
        except StoreUnavailable as exc:
            logger.error(
                "auth_dependency_unavailable",
                operation=operation,
                backend=exc.backend,
                store_operation=exc.operation,
            )
            raise DependencyFailure(
                "authentication backend unavailable",
                detail={"operation": operation},
            ) from exc

    def _validate_password(self, password: Optional[str]) -> str:
        if not password or not isinstance(password, str):
            raise ValidationError("password is required", detail={"field": "password"})
        if len(password) < self.min_password_length:
            raise ValidationError(
                f"password must be at least {self.min_password_length} characters",
                detail={"field": "password"},
            )
        if len(password) > MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f"password must be at most {MAX_PASSWORD_LENGTH} characters",
                detail={"field": "password"},
            )
        return password

    @staticmethod
    def _require_email(email: Optional[str]) -> str:
        if not email or not isinstance(email, str) or not email.strip():
            raise ValidationError("email is required", detail={"field": "email"})
        return email.strip().lower()

    def _require_user(self, user_id: str) -> User:
        """Directory lookup; a vanished account raises ``NotFoundError``.

        Callers translate it into the failure their operation reports, so a
        deleted user is never surfaced as 404.
        """
        user = self.directory.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return user

    async def _issue_pair(self, user: User) -> TokenPair:
        access = self.signer.issue_access_token(user)
        refresh_id = generate_token_id()
        session = await self.sessions.put(
            user.id, refresh_id, self.signer.refresh_token_lifetime()
        )
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh_id,
            access_expires_at=access.claims.expires_at,
            refresh_expires_at=session.expires_at,
            user=user,
        )

    async def register(self, email: str, password: str, name: str) -> User:
        if not self.allow_registration:
            raise ValidationError("registration is disabled")
        normalized = self._require_email(email)
        if not _EMAIL_PATTERN.match(normalized):
            raise ValidationError("invalid email address", detail={"field": "email"})
        display_name = (name or "").strip()
        if not display_name or len(display_name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"name must be 1 to {MAX_NAME_LENGTH} characters", detail={"field": "name"}
            )
        self._validate_password(password)
        password_hash = self.hasher.hash(password)
        with self._dependency("register"):
            try:
                user = self.directory.create_user(normalized, display_name, password_hash)
            except ConstraintViolation as exc:
                raise ConflictError("email already registered", detail=exc.detail) from exc
        logger.info("user_registered", user_id=user.id)
        return user

    async def login(self, email: str, password: str) -> TokenPair:
        normalized = self._require_email(email)
        if not password:
            raise ValidationError("password is required", detail={"field": "password"})
        with self._dependency("login"):
            user = self.directory.find_user_by_email(normalized)
            if user is None:
                # Same argon2 cost as a real check so timing does not reveal the miss
                self.hasher.verify_dummy(password)
                logger.info("login_failed", email_hash=email_fingerprint(normalized))
                raise AuthFailure("invalid credentials")
            if not self.hasher.verify(user.password_hash, password):
                logger.info("login_failed", email_hash=email_fingerprint(normalized))
                raise AuthFailure("invalid credentials")
            if user.password_hash and self.hasher.needs_rehash(user.password_hash):
                self.directory.set_password_hash(user.id, self.hasher.hash(password))
            pair = await self._issue_pair(user)
        logger.info("login_succeeded", user_id=user.id)
        return pair

    async def refresh(self, refresh_token_id: str) -> TokenPair:
        """Rotate a refresh token: consume it and issue a fresh pair.

        Of two concurrent calls with the same id at most one succeeds; the
        loser gets ``AuthFailure`` and no new session is created for it.
        """
        if not refresh_token_id:
            raise AuthFailure("invalid refresh token")
        with self._dependency("refresh"):
            session = await self.sessions.get(refresh_token_id)
            if session is None:
                logger.info("refresh_unknown_token")
                raise AuthFailure("invalid refresh token")
            try:
                user = self._require_user(session.user_id)
            except NotFoundError as exc:
                await self.sessions.delete(refresh_token_id)
                logger.warning("refresh_user_missing", user_id=session.user_id)
                raise AuthFailure("invalid refresh token") from exc
            taken = await self.sessions.take(refresh_token_id)
            if taken is None:
                logger.warning("refresh_replay_rejected", user_id=session.user_id)
                raise AuthFailure("invalid refresh token")
            pair = await self._issue_pair(user)
        logger.info("refresh_rotated", user_id=user.id)
        return pair

    async def logout(
        self,
        refresh_token_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> None:
        """Best-effort logout; each credential is handled independently.

        A dependency failure in one step does not skip the other; the first
        such failure is raised after both have run.
        """
        failure: Optional[DependencyFailure] = None
        if refresh_token_id:
            try:
                with self._dependency("logout_refresh"):
                    await self.sessions.delete(refresh_token_id)
            except DependencyFailure as exc:
                failure = exc
        if access_token:
            claims = self.signer.verify_access_token(access_token)
            if claims is not None:
                try:
                    with self._dependency("logout_access"):
                        await self.revocations.revoke(
                            self.signer.token_id(access_token),
                            self.signer.remaining_lifetime(claims),
                        )
                except DependencyFailure as exc:
                    failure = failure or exc
        if failure is not None:
            raise failure
        logger.info("logout_completed")

    async def authenticate(self, access_token: Optional[str]) -> AccessClaims:
        """Claims of a valid, unrevoked access token."""
        if not access_token:
            raise AuthFailure("authentication required")
        with self._dependency("authenticate"):
            revoked = await self.revocations.is_revoked(self.signer.token_id(access_token))
        if revoked:
            raise AuthFailure("invalid access token")
        claims = self.signer.verify_access_token(access_token)
        if claims is None:
            raise AuthFailure("invalid access token")
        return claims

    async def current_user(self, access_token: Optional[str]) -> User:
        claims = await self.authenticate(access_token)
        try:
            with self._dependency("current_user"):
                return self._require_user(claims.subject)
        except NotFoundError as exc:
            raise AuthFailure("invalid access token") from exc

    async def forgot_password(self, email: str) -> None:
        """Start a reset; the outcome is identical for known and unknown emails.

        Delivery runs in a background task, so the caller's wait does not
        depend on whether a message is sent. ``drain_notifications`` awaits it.
        """
        normalized = self._require_email(email)
        with self._dependency("forgot_password"):
            user = self.directory.find_user_by_email(normalized)
            token = await self.reset_tokens.issue(user.id) if user is not None else None
        if user is None:
            logger.info("reset_requested_unknown", email_hash=email_fingerprint(normalized))
        else:
            logger.info("reset_token_issued", user_id=user.id)
            self._schedule_reset_message(user, token)

    def _schedule_reset_message(self, user: User, token: str) -> None:
        if self.notifier is None:
            logger.warning("reset_notifier_missing", user_id=user.id)
            return
        task = asyncio.create_task(self._deliver_reset_message(user, token))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _deliver_reset_message(self, user: User, token: str) -> None:
        try:
            sent = await asyncio.to_thread(self.notifier.send_reset_message, user.email, token)
        except Exception as exc:
            logger.error(
                "reset_notifier_failed",
                user_id=user.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        if not sent:
            logger.error("reset_notifier_failed", user_id=user.id)

    async def drain_notifications(self) -> None:
        """Wait for reset messages still being delivered."""
        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications))

    async def reset_password(self, token_id: str, new_password: str) -> None:
        """Set a new password with a one-time token and revoke every session."""
        self._validate_password(new_password)
        with self._dependency("reset_password"):
            user_id = await self.reset_tokens.redeem(token_id)
            if user_id is None:
                raise InvalidTokenError("invalid or expired reset token")
            try:
                user = self._require_user(user_id)
            except NotFoundError as exc:
                await self.reset_tokens.consume(token_id)
                logger.warning("reset_user_missing", user_id=user_id)
                raise InvalidTokenError("invalid or expired reset token") from exc
            self.directory.set_password_hash(user.id, self.hasher.hash(new_password))
            if not await self.reset_tokens.consume(token_id):
                # Another reset with the same token finished first
                logger.warning("reset_token_consume_race", user_id=user.id)
            revoked = await self.sessions.delete_all_for_user(user.id)
        logger.info("password_reset_completed", user_id=user.id, revoked_count=revoked)
