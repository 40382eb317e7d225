"""Record (de)serialization shared by the memory and redis backends."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from authcycle.storage.models import Token, TokenKind, User


def serialize_datetime(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def deserialize_datetime(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "password_hash": user.password_hash,
        "is_active": user.is_active,
        "created_at": serialize_datetime(user.created_at),
    }


def deserialize_user(data: Dict[str, Any]) -> User:
    return User(
        id=data["id"],
        username=data["username"],
        password_hash=data["password_hash"],
        is_active=bool(data.get("is_active", True)),
        created_at=deserialize_datetime(data["created_at"]),
    )


def serialize_token(token: Token) -> Dict[str, Any]:
    return {
        "id": token.id,
        "user_id": token.user_id,
        "kind": token.kind.value,
        "created_at": serialize_datetime(token.created_at),
        "expires_at": serialize_datetime(token.expires_at),
        "request_id": token.request_id,
    }


def deserialize_token(data: Dict[str, Any]) -> Token:
    return Token(
        id=data["id"],
        user_id=data["user_id"],
        kind=TokenKind(data.get("kind", TokenKind.REFRESH.value)),
        created_at=deserialize_datetime(data["created_at"]),
        expires_at=deserialize_datetime(data["expires_at"]),
        request_id=data.get("request_id"),
    )
