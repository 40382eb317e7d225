import os
import stat

import pytest
from pydantic import ValidationError

from authcycle.config import Settings, StoreBackend, get_settings, reset_settings_cache


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in (
        "JWT_SECRET",
        "ACCESS_TOKEN_TTL_MINUTES",
        "REFRESH_TOKEN_TTL_MINUTES",
        "STORE_BACKEND",
        "REDIS_TOKEN_STORE",
        "REVOKE_ALL_ON_REFRESH_REUSE",
        "TOKEN_PURGE_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STATE_DIR", str(tmp_path))
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestFromEnv:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.access_token_ttl_minutes == 15
        assert settings.refresh_token_ttl_minutes == 14 * 24 * 60
        assert settings.clock_skew_seconds == 30
        assert settings.store_backend is StoreBackend.MEMORY
        assert settings.revoke_all_on_refresh_reuse is False
        assert settings.redis_token_store is False
        assert settings.token_purge_interval_seconds == 3600

    def test_environment_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "k" * 40)
        monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
        monkeypatch.setenv("STORE_BACKEND", "postgres")
        monkeypatch.setenv("REVOKE_ALL_ON_REFRESH_REUSE", "true")

        settings = Settings.from_env()

        assert settings.jwt_secret == "k" * 40
        assert settings.access_token_ttl_minutes == 5
        assert settings.store_backend is StoreBackend.POSTGRES
        assert settings.revoke_all_on_refresh_reuse is True

    def test_dotenv_file_is_read(self, clean_env):
        (clean_env / ".env").write_text("REFRESH_TOKEN_TTL_MINUTES=90\n")

        assert Settings.from_env().refresh_token_ttl_minutes == 90

    def test_environment_beats_dotenv(self, clean_env, monkeypatch):
        (clean_env / ".env").write_text("REFRESH_TOKEN_TTL_MINUTES=90\n")
        monkeypatch.setenv("REFRESH_TOKEN_TTL_MINUTES", "30")

        assert Settings.from_env().refresh_token_ttl_minutes == 30

    @pytest.mark.parametrize("value", ["0", "-1", "soon"])
    def test_invalid_ttl_rejected(self, clean_env, monkeypatch, value):
        monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", value)

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_negative_purge_interval_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("TOKEN_PURGE_INTERVAL_SECONDS", "-5")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_unknown_backend_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "sqlite")

        with pytest.raises(ValidationError):
            Settings.from_env()


class TestJwtSecret:
    def test_generated_secret_is_persisted(self, clean_env):
        first = Settings.from_env().jwt_secret
        secret_file = clean_env / ".jwt_secret"

        assert len(first) >= 32
        assert secret_file.read_text() == first
        assert stat.S_IMODE(os.stat(secret_file).st_mode) == 0o600
        assert Settings.from_env().jwt_secret == first

    def test_short_persisted_secret_is_replaced(self, clean_env):
        (clean_env / ".jwt_secret").write_text("short")

        assert len(Settings.from_env().jwt_secret) >= 32


def test_settings_cache(clean_env, monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "7")
    reset_settings_cache()
    assert get_settings() is get_settings()
    assert get_settings().access_token_ttl_minutes == 7

    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "8")
    assert get_settings().access_token_ttl_minutes == 7
    reset_settings_cache()
    assert get_settings().access_token_ttl_minutes == 8
