from __future__ import annotations

from typing import Optional

from authcycle.logging import get_logger
from authcycle.service.codec import TokenCodec
from authcycle.service.credentials import UserStore
from authcycle.service.errors import (
    InvalidRefreshToken,
    SignatureInvalidOrExpired,
    StorageUnavailable,
    UserMismatch,
)
from authcycle.service.issuer import TokenIssuer, TokenStore
from authcycle.storage.errors import StoreUnavailable
from authcycle.storage.models import TokenKind, TokenPair

logger = get_logger(__name__)


class RefreshRotationEngine:
    """Exchange a refresh token for a new pair exactly once.

    A refresh token id moves from issued to consumed, revoked, or expired,
    and never back. The conditional delete on the token store is the only
    synchronization point: whichever caller deletes the record wins, every
    other caller holding the same token gets ``InvalidRefreshToken``.
    """

    def __init__(
        self,
        users: UserStore,
        tokens: TokenStore,
        codec: TokenCodec,
        issuer: TokenIssuer,
        *,
        revoke_all_on_reuse: bool = False,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.codec = codec
        self.issuer = issuer
        self.revoke_all_on_reuse = revoke_all_on_reuse

    async def rotate(
        self, presented: Optional[str], *, request_id: Optional[str] = None
    ) -> TokenPair:
        try:
            claims = self.codec.verify(presented, expected_type=TokenKind.REFRESH.value)
        except SignatureInvalidOrExpired as exc:
            raise InvalidRefreshToken("invalid refresh token") from exc
        token_id = str(claims["jti"])
        subject = str(claims["sub"])

        try:
            record = await self.tokens.get_token(token_id)
        except StoreUnavailable as exc:
            raise StorageUnavailable("refresh token lookup failed") from exc
        if record is None:
            logger.warning(
                "refresh_token_replay_suspected", token_id=token_id, user_id=subject
            )
            if self.revoke_all_on_reuse:
                await self._revoke_all_after_reuse(subject)
            raise InvalidRefreshToken("invalid refresh token")
        if record.user_id != subject:
            logger.warning(
                "refresh_token_user_mismatch",
                token_id=token_id,
                user_id=subject,
                record_user_id=record.user_id,
            )
            raise UserMismatch("refresh token subject mismatch")

        try:
            user = await self.users.get_user(record.user_id)
        except StoreUnavailable as exc:
            raise StorageUnavailable("user lookup failed") from exc
        if user is None or not user.is_active:
            logger.info("refresh_token_user_rejected", token_id=token_id, user_id=subject)
            raise InvalidRefreshToken("invalid refresh token")

        try:
            consumed = await self.tokens.delete_token_if_present(token_id)
        except StoreUnavailable as exc:
            raise StorageUnavailable("refresh token consume failed") from exc
        if not consumed:
            logger.warning("refresh_token_consume_lost", token_id=token_id, user_id=subject)
            raise InvalidRefreshToken("invalid refresh token")

        # The old token is already unusable; a failure past this point leaves
        # the caller to log in again rather than risk a reusable token.
        pair = await self.issuer.issue(user, request_id=request_id)
        logger.info("refresh_token_rotated", token_id=token_id, user_id=user.id)
        return pair

    async def _revoke_all_after_reuse(self, user_id: str) -> None:
        try:
            removed = await self.tokens.delete_tokens_for_user(user_id)
        except StoreUnavailable as exc:
            logger.error("refresh_reuse_revocation_failed", user_id=user_id, error=str(exc))
            return
        logger.warning("refresh_reuse_revoked_all", user_id=user_id, count=removed)
