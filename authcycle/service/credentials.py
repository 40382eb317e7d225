from __future__ import annotations

from typing import Optional, Protocol

from authcycle.logging import get_logger
from authcycle.service.errors import InvalidCredentials, StorageUnavailable
from authcycle.service.passwords import PasswordHasher
from authcycle.storage.errors import StoreUnavailable
from authcycle.storage.models import User

logger = get_logger(__name__)


class UserStore(Protocol):
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...


class CredentialVerifier:
    """Check a username/password pair against the user store."""

    def __init__(self, users: UserStore, hasher: PasswordHasher) -> None:
        self.users = users
        self.hasher = hasher

    async def verify(self, username: str, password: str) -> User:
        try:
            user = await self.users.get_user_by_username(username)
        except StoreUnavailable as exc:
            raise StorageUnavailable("user lookup failed") from exc
        if user is None:
            # Spend the same KDF time as a real comparison before failing
            await self.hasher.verify(password, self.hasher.dummy_hash)
            logger.info("credential_check_failed", reason="unknown_user")
            raise InvalidCredentials("invalid credentials")
        if not await self.hasher.verify(password, user.password_hash):
            logger.info("credential_check_failed", reason="password_mismatch", user_id=user.id)
            raise InvalidCredentials("invalid credentials")
        if not user.is_active:
            logger.info("credential_check_failed", reason="inactive", user_id=user.id)
            raise InvalidCredentials("invalid credentials")
        return user
