from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional, Protocol

from authcycle.config import Settings
from authcycle.logging import get_logger
from authcycle.service.codec import TokenCodec
from authcycle.service.errors import StorageUnavailable
from authcycle.storage.errors import ConstraintViolation, StoreUnavailable
from authcycle.storage.models import Token, TokenKind, TokenPair, User

logger = get_logger(__name__)


class TokenStore(Protocol):
    async def create_token(self, token: Token) -> None: ...

    async def get_token(self, token_id: str) -> Optional[Token]: ...

    async def delete_token_if_present(self, token_id: str) -> bool: ...

    async def delete_tokens_for_user(self, user_id: str) -> int: ...


class TokenIssuer:
    """Mint access/refresh pairs; the refresh record is stored before signing."""

    def __init__(self, tokens: TokenStore, codec: TokenCodec, settings: Settings) -> None:
        self.tokens = tokens
        self.codec = codec
        self.access_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self.refresh_ttl_minutes = settings.refresh_token_ttl_minutes

    async def issue(self, user: User, *, request_id: Optional[str] = None) -> TokenPair:
        record = Token.new(user.id, self.refresh_ttl_minutes, request_id=request_id)
        try:
            await self.tokens.create_token(record)
        except (StoreUnavailable, ConstraintViolation) as exc:
            logger.error(
                "refresh_token_persist_failed",
                user_id=user.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StorageUnavailable("refresh token could not be stored") from exc

        access_jti = str(uuid.uuid4())
        access_token = self.codec.sign(
            {"sub": user.id, "jti": access_jti, "token_type": TokenKind.ACCESS.value},
            self.access_ttl,
        )
        refresh_token = self.codec.sign(
            {"sub": user.id, "jti": record.id, "token_type": TokenKind.REFRESH.value},
            record.expires_at - record.created_at,
        )
        logger.debug("token_pair_issued", user_id=user.id, token_id=record.id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=record.created_at + self.access_ttl,
            refresh_expires_at=record.expires_at,
            user_id=user.id,
        )
