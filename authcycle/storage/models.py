from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Token:
    """A persisted refresh credential. Access tokens are never stored."""

    id: str
    user_id: str
    expires_at: datetime
    kind: TokenKind = TokenKind.REFRESH
    created_at: datetime = field(default_factory=utcnow)
    request_id: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        ttl_minutes: int,
        *,
        request_id: Optional[str] = None,
    ) -> "Token":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
            request_id=request_id,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"
    # Subject of both tokens
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ActiveUser:
    """Identity resolved from a verified access token."""

    user_id: str
    token_id: Optional[str] = None
