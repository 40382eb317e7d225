from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from authcycle.logging import get_logger
from authcycle.storage.errors import ConstraintViolation, StoreUnavailable
from authcycle.storage.models import Token, TokenKind, User

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS auth_user (
        id UUID PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_refresh_token (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES auth_user(id) ON DELETE CASCADE,
        kind TEXT NOT NULL DEFAULT 'refresh',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        expires_at TIMESTAMPTZ NOT NULL,
        request_id TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS auth_refresh_token_user_idx ON auth_refresh_token (user_id)",
)


class PostgresStore:
    """Postgres-backed user and refresh token store.

    The conditional delete is a single ``DELETE ... RETURNING`` statement,
    so concurrent consumers of the same token id are serialized by the row
    lock and only one of them gets the row back.
    """

    def __init__(self, dsn: str, *, pool: Any = None) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = pool or AsyncConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": True},
            open=False,
        )

    def _connect(self):
        return self.pool.connection()

    async def open(self) -> None:
        await self.pool.open()
        await self.ensure_schema()

    async def ensure_schema(self) -> None:
        """Create the user and refresh token tables when missing."""
        async with self._connect() as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)

    async def close(self) -> None:
        await self.pool.close()

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password_hash"],
            is_active=row.get("is_active", True),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

    @staticmethod
    def _row_to_token(row: Dict[str, Any]) -> Token:
        return Token(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            kind=TokenKind(row.get("kind") or TokenKind.REFRESH.value),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            expires_at=row["expires_at"],
            request_id=row.get("request_id"),
        )

    # users
    async def create_user(
        self, username: str, password_hash: str, *, is_active: bool = True
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    """
                    INSERT INTO auth_user (id, username, password_hash, is_active)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, username, password_hash, is_active),
                )
                row = await cur.fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("username already exists", {"field": "username"}) from exc
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres write failed", {"username": username}) from exc
        return self._row_to_user(row)

    async def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        async with self._connect() as conn:
            cur = await conn.execute(
                "UPDATE auth_user SET is_active = %s WHERE id = %s RETURNING *",
                (is_active, user_id),
            )
            row = await cur.fetchone()
        return self._row_to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "SELECT * FROM auth_user WHERE username = %s", (username,)
                )
                row = await cur.fetchone()
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres read failed") from exc
        return self._row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "SELECT * FROM auth_user WHERE id = %s", (user_id,)
                )
                row = await cur.fetchone()
        except errors.InvalidTextRepresentation:
            return None
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres read failed", {"user_id": user_id}) from exc
        return self._row_to_user(row) if row else None

    # refresh tokens
    async def create_token(self, token: Token) -> None:
        if token.kind != TokenKind.REFRESH:
            raise ConstraintViolation("only refresh tokens are persisted", {"kind": token.kind.value})
        try:
            async with self._connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO auth_refresh_token (id, user_id, kind, created_at, expires_at, request_id)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        token.id,
                        token.user_id,
                        token.kind.value,
                        token.created_at,
                        token.expires_at,
                        token.request_id,
                    ),
                )
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("token id already exists", {"token_id": token.id}) from exc
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("user does not exist", {"user_id": token.user_id}) from exc
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres write failed", {"token_id": token.id}) from exc

    async def get_token(self, token_id: str) -> Optional[Token]:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "SELECT * FROM auth_refresh_token WHERE id = %s AND expires_at > now()",
                    (token_id,),
                )
                row = await cur.fetchone()
        except errors.InvalidTextRepresentation:
            return None
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres read failed", {"token_id": token_id}) from exc
        return self._row_to_token(row) if row else None

    async def delete_token_if_present(self, token_id: str) -> bool:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    """
                    DELETE FROM auth_refresh_token
                    WHERE id = %s AND expires_at > now()
                    RETURNING id
                    """,
                    (token_id,),
                )
                row = await cur.fetchone()
        except errors.InvalidTextRepresentation:
            return False
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres delete failed", {"token_id": token_id}) from exc
        return row is not None

    async def delete_tokens_for_user(self, user_id: str) -> int:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "DELETE FROM auth_refresh_token WHERE user_id = %s", (user_id,)
                )
                count = cur.rowcount
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres delete failed", {"user_id": user_id}) from exc
        return max(count or 0, 0)

    async def purge_expired_tokens(self) -> int:
        try:
            async with self._connect() as conn:
                cur = await conn.execute(
                    "DELETE FROM auth_refresh_token WHERE expires_at <= now()"
                )
                count = max(cur.rowcount or 0, 0)
        except errors.OperationalError as exc:
            raise StoreUnavailable("postgres purge failed") from exc
        if count:
            self.logger.info("expired_tokens_purged", count=count)
        return count
