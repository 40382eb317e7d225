from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authcycle.logging import get_logger
from authcycle.storage.common import deserialize_token, serialize_token
from authcycle.storage.errors import ConstraintViolation, StoreUnavailable
from authcycle.storage.models import Token, TokenKind

logger = get_logger(__name__)


class RedisTokenStore:
    """Refresh token records in Redis, shared across service instances.

    Records live under ``auth:refresh:<id>`` with a TTL matching the token
    expiry, so Redis expires them on its own. ``DEL`` reports how many keys
    it removed, which makes it the atomic conditional delete that rotation
    relies on: of two concurrent deletes of the same key exactly one sees 1.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Any = None,
    ) -> None:
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @staticmethod
    def _token_key(token_id: str) -> str:
        return f"auth:refresh:{token_id}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"auth:user_refresh:{user_id}"

    @staticmethod
    def _ttl_seconds(expires_at: datetime) -> int:
        """Compute a TTL from an absolute expiry, clamped to at least 1 second."""

        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def create_token(self, token: Token) -> None:
        if token.kind != TokenKind.REFRESH:
            raise ConstraintViolation("only refresh tokens are persisted", {"kind": token.kind.value})
        ttl = self._ttl_seconds(token.expires_at)
        try:
            created = await self.client.set(
                self._token_key(token.id),
                json.dumps(serialize_token(token)),
                ex=ttl,
                nx=True,
            )
            if not created:
                raise ConstraintViolation("token id already exists", {"token_id": token.id})
            pipe = self.client.pipeline()
            pipe.sadd(self._user_key(token.user_id), token.id)
            pipe.expire(self._user_key(token.user_id), ttl)
            await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailable("redis write failed", {"token_id": token.id}) from exc

    async def get_token(self, token_id: str) -> Optional[Token]:
        try:
            raw = await self.client.get(self._token_key(token_id))
        except RedisError as exc:
            raise StoreUnavailable("redis read failed", {"token_id": token_id}) from exc
        if not raw:
            return None
        try:
            token = deserialize_token(json.loads(raw))
        except (ValueError, KeyError) as exc:
            logger.warning("redis_token_record_invalid", token_id=token_id, error=str(exc))
            return None
        if token.is_expired():
            return None
        return token

    async def delete_token_if_present(self, token_id: str) -> bool:
        key = self._token_key(token_id)
        try:
            raw = await self.client.get(key)
            deleted = await self.client.delete(key)
            if deleted and raw:
                try:
                    user_id = json.loads(raw).get("user_id")
                except ValueError:
                    user_id = None
                if user_id:
                    await self.client.srem(self._user_key(user_id), token_id)
        except RedisError as exc:
            raise StoreUnavailable("redis delete failed", {"token_id": token_id}) from exc
        return bool(deleted)

    async def delete_tokens_for_user(self, user_id: str) -> int:
        user_key = self._user_key(user_id)
        try:
            token_ids = await self.client.smembers(user_key)
            if not token_ids:
                return 0
            pipe = self.client.pipeline()
            for token_id in token_ids:
                pipe.delete(self._token_key(token_id))
            pipe.delete(user_key)
            results = await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailable("redis bulk delete failed", {"user_id": user_id}) from exc
        # Last result is the index set itself
        return sum(int(r) for r in results[:-1])

    async def close(self) -> None:
        await self.client.aclose()
