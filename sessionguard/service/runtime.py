from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse, urlunparse

from sessionguard.config import Settings, get_settings
from sessionguard.logging import get_logger
from sessionguard.service.auth import Notifier, SessionManager, UserDirectory
from sessionguard.service.clock import Clock, SystemClock
from sessionguard.service.email import EmailService
from sessionguard.service.passwords import PasswordHasher
from sessionguard.service.reset_tokens import ResetTokenStore
from sessionguard.service.revocation import RevocationList
from sessionguard.service.sessions import SessionStore
from sessionguard.service.tokens import TokenSigner
from sessionguard.storage.cache import RecordCache
from sessionguard.storage.memory import MemoryCache, MemoryUserDirectory
from sessionguard.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Owns the store clients and the wired ``SessionManager``.

    Constructed explicitly and opened once; ``close`` releases the Redis
    client and the Postgres pool. Collaborators can be injected for tests.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Optional[Clock] = None,
        cache: Optional[RecordCache] = None,
        directory: Optional[UserDirectory] = None,
        notifier: Optional[Notifier] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock: Clock = clock or SystemClock()
        self.cache = cache
        self.directory = directory
        self.notifier = notifier
        self.hasher = hasher
        self.signer: Optional[TokenSigner] = None
        self.manager: Optional[SessionManager] = None
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> "Runtime":
        if self._opened:
            return self
        settings = self.settings
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
        )
        if self.cache is None:
            self.cache = await self._connect_cache()
        if self.directory is None:
            self.directory = self._build_directory()
        if self.notifier is None:
            self.notifier = EmailService(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                smtp_use_tls=settings.smtp_use_tls,
                from_email=settings.email_from_address,
                from_name=settings.email_from_name,
                base_url=settings.app_base_url,
                reset_ttl_minutes=max(1, settings.reset_token_ttl_seconds // 60),
            )

        access_ttl = timedelta(seconds=settings.access_token_ttl_seconds)
        refresh_ttl = timedelta(seconds=settings.refresh_token_ttl_seconds)
        self.signer = TokenSigner(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            clock=self.clock,
            access_lifetime=access_ttl,
            refresh_lifetime=refresh_ttl,
        )
        self.manager = SessionManager(
            signer=self.signer,
            sessions=SessionStore(self.cache, clock=self.clock, default_ttl=refresh_ttl),
            revocations=RevocationList(self.cache, clock=self.clock, max_ttl=access_ttl),
            reset_tokens=ResetTokenStore(
                self.cache,
                clock=self.clock,
                default_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
            ),
            directory=self.directory,
            hasher=self.hasher,
            notifier=self.notifier,
            min_password_length=settings.min_password_length,
            allow_registration=settings.allow_registration,
        )
        self._opened = True
        logger.info("runtime_ready", cache_type=type(self.cache).__name__)
        return self

    async def _connect_cache(self) -> RecordCache:
        settings = self.settings
        redis_error: Optional[Exception] = None
        if settings.redis_url:
            cache = RedisCache(
                settings.redis_url, socket_timeout=settings.redis_socket_timeout
            )
            try:
                await asyncio.to_thread(cache.verify_connection)
                return cache
            except Exception as exc:
                redis_error = exc
                await cache.close()

        if not settings.redis_fallback_allowed:
            logger.error(
                "redis_unavailable",
                redis_url=_mask_url_password(settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
            )
            raise RuntimeError(
                "Redis is required for sessions and token revocation; start Redis or "
                "set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            mode=fallback_mode,
        )
        return MemoryCache(clock=self.clock)

    def _build_directory(self) -> UserDirectory:
        if self.settings.use_memory_store:
            logger.info("runtime_directory_initialized", store_type="memory")
            return MemoryUserDirectory(clock=self.clock)
        # Deferred so memory-only deployments do not need a Postgres driver
        from sessionguard.storage.postgres import PostgresUserDirectory

        try:
            directory = PostgresUserDirectory(self.settings.database_url)
        except Exception as exc:
            logger.error(
                "runtime_directory_init_failed",
                store_type="postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_directory_initialized", store_type="postgres")
        return directory

    async def close(self) -> None:
        if self.manager is not None:
            await self.manager.drain_notifications()
        if self.cache is not None:
            await self.cache.close()
        close_directory = getattr(self.directory, "close", None)
        if close_directory is not None:
            close_directory()
        self._opened = False
        logger.info("runtime_closed")
