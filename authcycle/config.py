from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authcycle.logging import get_logger

logger = get_logger(__name__)

_MIN_SECRET_LENGTH = 32


class StoreBackend(str, Enum):
    """Persistence backends for user and refresh token records."""

    MEMORY = "memory"
    REDIS = "redis"
    POSTGRES = "postgres"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token lifecycle engine."""

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("authcycle", "JWT_ISSUER")
    jwt_audience: str = env_field("authcycle-clients", "JWT_AUDIENCE")
    access_token_ttl_minutes: int = env_field(
        15,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Lifetime of stateless access tokens",
        gt=0,
    )
    refresh_token_ttl_minutes: int = env_field(
        14 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Lifetime of persisted refresh tokens",
        gt=0,
    )
    clock_skew_seconds: int = env_field(
        30,
        "CLOCK_SKEW_SECONDS",
        description="Leeway applied to exp/iat checks across nodes",
        ge=0,
    )
    refresh_cookie_name: str = env_field("refresh_token", "REFRESH_COOKIE_NAME")
    refresh_cookie_secure: bool = env_field(True, "REFRESH_COOKIE_SECURE")
    token_purge_interval_seconds: int = env_field(
        3600,
        "TOKEN_PURGE_INTERVAL_SECONDS",
        description="Seconds between sweeps of expired refresh records; 0 disables the sweep",
        ge=0,
    )
    revoke_all_on_refresh_reuse: bool = env_field(
        False,
        "REVOKE_ALL_ON_REFRESH_REUSE",
        description="Revoke every refresh token of a user when a consumed one is replayed",
    )
    store_backend: StoreBackend = env_field(
        StoreBackend.MEMORY,
        "STORE_BACKEND",
        description="Backend for users and, unless REDIS_TOKEN_STORE is set, refresh tokens",
    )
    redis_token_store: bool = env_field(
        False,
        "REDIS_TOKEN_STORE",
        description="Keep refresh token records in Redis instead of the main store",
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    database_url: str = env_field(
        "postgresql://localhost:5432/authcycle", "DATABASE_URL"
    )
    state_dir: str = env_field("/var/lib/authcycle", "STATE_DIR")
    test_mode: bool = env_field(False, "TEST_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("store_backend")
    @classmethod
    def _validate_store_backend(cls, value: StoreBackend) -> StoreBackend:
        return StoreBackend(value)

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value) < _MIN_SECRET_LENGTH:
                logger.warning("jwt_secret_short", length=len(value))
            return value
        # Persist a generated secret so tokens remain valid across restarts
        state_dir = Path(os.getenv("STATE_DIR", "/var/lib/authcycle"))
        secret_path = state_dir / ".jwt_secret"

        try:
            state_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(state_dir, 0o700)
        except PermissionError:
            # Directory may already exist with different permissions (e.g., in container)
            pass
        except OSError as exc:
            logger.warning(
                "jwt_secret_dir_setup",
                error=str(exc),
                path=str(state_dir),
            )

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= _MIN_SECRET_LENGTH:
                    return persisted
            except OSError as exc:
                logger.error(
                    "jwt_secret_read_failed", error=str(exc), path=str(secret_path)
                )

        generated = secrets.token_urlsafe(64)
        tmp_path: str | None = None
        try:
            # Write to a temp file then rename so readers never see a partial secret
            fd, tmp_path = tempfile.mkstemp(
                dir=str(state_dir), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "jwt_secret_persist_failed", error=str(exc), path=str(secret_path)
            )
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET or make STATE_DIR writable"
            ) from exc
        return generated


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
