from __future__ import annotations

from typing import Optional

from authcycle.logging import get_logger
from authcycle.service.codec import TokenCodec
from authcycle.service.errors import SignatureInvalidOrExpired, StorageUnavailable
from authcycle.service.issuer import TokenStore
from authcycle.storage.errors import StoreUnavailable
from authcycle.storage.models import TokenKind

logger = get_logger(__name__)


class SessionRevoker:
    """Delete refresh token records on logout."""

    def __init__(self, tokens: TokenStore, codec: TokenCodec) -> None:
        self.tokens = tokens
        self.codec = codec

    async def revoke(self, token_id: str) -> bool:
        """Revoke one refresh token id; revoking an absent id is not an error."""
        try:
            removed = await self.tokens.delete_token_if_present(token_id)
        except StoreUnavailable as exc:
            raise StorageUnavailable("refresh token revoke failed") from exc
        logger.info("refresh_token_revoked", token_id=token_id, removed=removed)
        return removed

    async def revoke_all(self, user_id: str) -> int:
        """Revoke every outstanding refresh token owned by ``user_id``."""
        try:
            removed = await self.tokens.delete_tokens_for_user(user_id)
        except StoreUnavailable as exc:
            raise StorageUnavailable("refresh token bulk revoke failed") from exc
        logger.info("refresh_tokens_revoked_all", user_id=user_id, count=removed)
        return removed

    async def revoke_presented(self, refresh_token: Optional[str], *, user_id: str) -> bool:
        """Revoke the refresh token carried by a logging-out client.

        Expiry is not checked so an expired token's record is still cleaned
        up, but the signature is, and the token must belong to ``user_id``.
        """
        if not refresh_token:
            return False
        try:
            claims = self.codec.verify(
                refresh_token,
                expected_type=TokenKind.REFRESH.value,
                verify_exp=False,
            )
        except SignatureInvalidOrExpired:
            logger.info("logout_refresh_token_unreadable", user_id=user_id)
            return False
        if str(claims["sub"]) != user_id:
            logger.warning(
                "logout_refresh_token_foreign",
                user_id=user_id,
                token_id=str(claims["jti"]),
            )
            return False
        return await self.revoke(str(claims["jti"]))
