from authcycle.logging import (
    _add_correlation_id,
    _redact_secrets,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
)
from authcycle.service.runtime import _mask_url_password


class TestRedaction:
    def test_secret_like_keys_are_masked(self):
        event = _redact_secrets(
            None,
            "info",
            {
                "event": "login",
                "password": "Correct-Horse-Battery-42",
                "refresh_token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
                "authorization": "Bearer abc",
                "username": "alice",
            },
        )

        assert event["password"] == "Co***42"
        assert event["refresh_token"].startswith("ey***")
        assert "payload" not in event["refresh_token"]
        assert event["authorization"] == "Be***bc"
        assert event["username"] == "alice"

    def test_identifier_keys_are_kept(self):
        event = _redact_secrets(None, "info", {"event": "x", "token_id": "abc-123"})

        assert event["token_id"] == "abc-123"

    def test_short_values_fully_masked(self):
        assert _redact_secrets(None, "info", {"secret": "abc"})["secret"] == "***"

    def test_event_name_untouched(self):
        event = _redact_secrets(None, "info", {"event": "refresh_token_rotated"})

        assert event["event"] == "refresh_token_rotated"


class TestCorrelationId:
    def test_set_generates_when_missing(self):
        token = correlation_id_var.set(None)
        try:
            cid = set_correlation_id()
            assert cid and get_correlation_id() == cid
        finally:
            correlation_id_var.reset(token)

    def test_processor_adds_id(self):
        token = correlation_id_var.set("req-42")
        try:
            assert _add_correlation_id(None, "info", {})["correlation_id"] == "req-42"
        finally:
            correlation_id_var.reset(token)


def test_mask_url_password():
    assert _mask_url_password("redis://:hunter2@localhost:6379/0") == "redis://:***@localhost:6379/0"
    assert _mask_url_password("postgresql://app:pw@db/authcycle") == "postgresql://app:***@db/authcycle"
    assert _mask_url_password("redis://localhost:6379") == "redis://localhost:6379"
    assert _mask_url_password(None) is None
