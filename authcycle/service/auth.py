from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from authcycle.logging import get_logger
from authcycle.service.carrier import TokenCarrier
from authcycle.service.codec import TokenCodec
from authcycle.service.credentials import CredentialVerifier
from authcycle.service.errors import (
    InvalidCredentials,
    InvalidRefreshToken,
    SignatureInvalidOrExpired,
    StorageUnavailable,
    UserMismatch,
)
from authcycle.service.events import AuditSink, AuthEvent
from authcycle.service.issuer import TokenIssuer
from authcycle.service.revoker import SessionRevoker
from authcycle.service.rotation import RefreshRotationEngine
from authcycle.storage.models import ActiveUser, TokenKind, TokenPair

logger = get_logger(__name__)


class AuthFailure(str, Enum):
    """The only failure kind login and refresh expose to callers."""

    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class FlowResult:
    ok: bool
    tokens: Optional[TokenPair] = None
    user_id: Optional[str] = None
    error: Optional[AuthFailure] = None

    @classmethod
    def success(cls, tokens: TokenPair, user_id: str) -> "FlowResult":
        return cls(ok=True, tokens=tokens, user_id=user_id)

    @classmethod
    def failure(cls, error: AuthFailure = AuthFailure.UNAUTHORIZED) -> "FlowResult":
        return cls(ok=False, error=error)


_EXPECTED_FAILURES = (
    InvalidCredentials,
    InvalidRefreshToken,
    UserMismatch,
    SignatureInvalidOrExpired,
)


def collapse_error(exc: BaseException, *, flow: str) -> AuthFailure:
    """Map any internal failure of a credential flow to the outward kind.

    Callers always get ``UNAUTHORIZED``. Operators still see storage outages
    and unexpected errors at error level, separate from ordinary bad
    credentials.
    """
    if isinstance(exc, _EXPECTED_FAILURES):
        logger.info(f"{flow}_rejected", reason=getattr(exc, "error_code", type(exc).__name__))
    elif isinstance(exc, StorageUnavailable):
        logger.error(f"{flow}_storage_unavailable", error=str(exc))
    else:
        logger.error(
            f"{flow}_unexpected_error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
    return AuthFailure.UNAUTHORIZED


class AuthOrchestrator:
    """Login, refresh and logout flows over the lifecycle components."""

    def __init__(
        self,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        rotation: RefreshRotationEngine,
        revoker: SessionRevoker,
        codec: TokenCodec,
        audit: AuditSink,
        *,
        refresh_max_age_seconds: int,
    ) -> None:
        self.verifier = verifier
        self.issuer = issuer
        self.rotation = rotation
        self.revoker = revoker
        self.codec = codec
        self.audit = audit
        self.refresh_max_age_seconds = refresh_max_age_seconds

    def _publish(self, event: AuthEvent) -> None:
        try:
            self.audit.publish(event)
        except Exception as exc:
            logger.warning(
                "audit_publish_failed",
                event_type=event.type.value,
                user_id=event.user_id,
                error=str(exc),
            )

    async def login(
        self,
        username: str,
        password: str,
        carrier: Optional[TokenCarrier] = None,
        *,
        request_id: Optional[str] = None,
    ) -> FlowResult:
        try:
            user = await self.verifier.verify(username, password)
            tokens = await self.issuer.issue(user, request_id=request_id)
        except Exception as exc:
            return FlowResult.failure(collapse_error(exc, flow="login"))
        if carrier is not None:
            carrier.set_refresh_token(tokens.refresh_token, self.refresh_max_age_seconds)
        self._publish(AuthEvent.logged_in(user.id))
        logger.info("login_succeeded", user_id=user.id)
        return FlowResult.success(tokens, user.id)

    async def refresh(
        self,
        carrier: TokenCarrier,
        *,
        request_id: Optional[str] = None,
    ) -> FlowResult:
        presented = carrier.get_refresh_token()
        if not presented:
            logger.info("refresh_rejected", reason="missing_token")
            return FlowResult.failure()
        try:
            tokens = await self.rotation.rotate(presented, request_id=request_id)
        except Exception as exc:
            carrier.clear()
            return FlowResult.failure(collapse_error(exc, flow="refresh"))
        carrier.set_refresh_token(tokens.refresh_token, self.refresh_max_age_seconds)
        return FlowResult.success(tokens, tokens.user_id)

    async def logout(
        self,
        carrier: TokenCarrier,
        identity: Optional[ActiveUser] = None,
        *,
        everywhere: bool = False,
    ) -> None:
        presented = carrier.get_refresh_token()
        carrier.clear()
        if identity is None:
            return
        try:
            if everywhere:
                await self.revoker.revoke_all(identity.user_id)
            else:
                await self.revoker.revoke_presented(presented, user_id=identity.user_id)
        except Exception as exc:
            logger.error(
                "logout_revocation_failed",
                user_id=identity.user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        self._publish(AuthEvent.logged_out(identity.user_id))
        logger.info("logout_succeeded", user_id=identity.user_id, everywhere=everywhere)

    def authenticate(self, access_token: Optional[str]) -> Optional[ActiveUser]:
        """Resolve the caller's identity from a bearer access token."""
        try:
            claims = self.codec.verify(access_token, expected_type=TokenKind.ACCESS.value)
        except SignatureInvalidOrExpired:
            return None
        return ActiveUser(user_id=str(claims["sub"]), token_id=str(claims["jti"]))
