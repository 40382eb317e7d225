from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import timedelta
from typing import Any, Optional

from authcycle.config import Settings
from authcycle.logging import get_logger
from authcycle.service.errors import SignatureInvalidOrExpired

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """HS256 JWT signing and verification bound to one issuer/audience."""

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.jwt_secret.encode()
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.leeway = settings.clock_skew_seconds

    def _sign_input(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def sign(self, claims: dict[str, Any], ttl: timedelta) -> str:
        now = int(time.time())
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            **claims,
            "exp": now + int(ttl.total_seconds()),
        }
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign_input(signing_input)}"

    def verify(
        self,
        token: Optional[str],
        *,
        expected_type: Optional[str] = None,
        verify_exp: bool = True,
    ) -> dict[str, Any]:
        """Return the claims of a valid token or raise ``SignatureInvalidOrExpired``.

        Every failure raises the same exception with the same message so
        callers cannot tell tampering from expiry.
        """
        if not token or not isinstance(token, str):
            raise SignatureInvalidOrExpired("invalid token")
        # compare_digest and the base64 decoders only accept ASCII text
        if not token.isascii():
            raise SignatureInvalidOrExpired("invalid token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise SignatureInvalidOrExpired("invalid token") from None

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            raise SignatureInvalidOrExpired("invalid token") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            raise SignatureInvalidOrExpired("invalid token")

        expected_sig = self._sign_input(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise SignatureInvalidOrExpired("invalid token")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise SignatureInvalidOrExpired("invalid token") from None
        if not isinstance(payload, dict):
            raise SignatureInvalidOrExpired("invalid token")

        if payload.get("iss") != self.issuer:
            raise SignatureInvalidOrExpired("invalid token")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise SignatureInvalidOrExpired("invalid token")
        if expected_type and payload.get("token_type") != expected_type:
            raise SignatureInvalidOrExpired("invalid token")
        if not payload.get("sub") or not payload.get("jti"):
            raise SignatureInvalidOrExpired("invalid token")

        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise SignatureInvalidOrExpired("invalid token") from None
        if verify_exp and exp_ts <= time.time() - self.leeway:
            raise SignatureInvalidOrExpired("invalid token")
        return payload
