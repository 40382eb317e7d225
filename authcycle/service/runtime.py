from __future__ import annotations

import threading
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

from authcycle.config import StoreBackend, get_settings, reset_settings_cache
from authcycle.logging import get_logger
from authcycle.service.auth import AuthOrchestrator
from authcycle.service.codec import TokenCodec
from authcycle.service.credentials import CredentialVerifier
from authcycle.service.events import AuditSink, LoggingAuditSink
from authcycle.service.issuer import TokenIssuer
from authcycle.service.passwords import PasswordHasher
from authcycle.service.revoker import SessionRevoker
from authcycle.service.rotation import RefreshRotationEngine
from authcycle.storage.memory import MemoryStore
from authcycle.storage.postgres import PostgresStore
from authcycle.storage.redis_store import RedisTokenStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
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
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton store and service instances for the app."""

    def __init__(self, *, audit: Optional[AuditSink] = None):
        self.settings = get_settings()
        backend = self.settings.store_backend
        logger.info(
            "runtime_init_started",
            store_backend=backend.value,
            redis_token_store=self.settings.redis_token_store,
            test_mode=self.settings.test_mode,
        )

        try:
            if backend == StoreBackend.POSTGRES:
                self.store: Any = PostgresStore(self.settings.database_url)
            else:
                self.store = MemoryStore(
                    fs_root=None if self.settings.test_mode else self.settings.state_dir
                )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_backend=backend.value,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.token_store: Any = self.store
        if self.settings.redis_token_store or backend == StoreBackend.REDIS:
            self.token_store = RedisTokenStore(self.settings.redis_url)
            logger.info(
                "runtime_redis_token_store",
                redis_url=_mask_url_password(self.settings.redis_url),
            )

        self.hasher = PasswordHasher()
        self.codec = TokenCodec(self.settings)
        self.audit: AuditSink = audit or LoggingAuditSink()
        self.verifier = CredentialVerifier(self.store, self.hasher)
        self.issuer = TokenIssuer(self.token_store, self.codec, self.settings)
        self.rotation = RefreshRotationEngine(
            self.store,
            self.token_store,
            self.codec,
            self.issuer,
            revoke_all_on_reuse=self.settings.revoke_all_on_refresh_reuse,
        )
        self.revoker = SessionRevoker(self.token_store, self.codec)
        self.auth = AuthOrchestrator(
            self.verifier,
            self.issuer,
            self.rotation,
            self.revoker,
            self.codec,
            self.audit,
            refresh_max_age_seconds=self.settings.refresh_token_ttl_minutes * 60,
        )
        logger.info("runtime_initialized", store_backend=backend.value)

    async def start(self) -> None:
        """Open connections and verify backends before serving requests."""
        if isinstance(self.store, PostgresStore):
            await self.store.open()
        if isinstance(self.token_store, RedisTokenStore):
            self.token_store.verify_connection()

    async def close(self) -> None:
        if self.token_store is not self.store:
            await self.token_store.close()
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
