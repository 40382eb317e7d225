from __future__ import annotations

import asyncio
from typing import Optional

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authcycle.logging import get_logger

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing with a plain ``verify(plaintext, hash) -> bool`` contract.

    argon2 compares digests in constant time; both calls run in a worker
    thread so the event loop is not blocked while the KDF runs.
    """

    def __init__(self, **params) -> None:
        self._hasher = _Argon2Hasher(type=Type.ID, **params)
        self._dummy_hash: Optional[str] = None

    @property
    def dummy_hash(self) -> str:
        """Hash verified against when a username does not exist, to burn the same KDF cost."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("authcycle-dummy-password")
        return self._dummy_hash

    def hash_sync(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify_sync(self, plaintext: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_hash_unusable")
            return False

    async def hash(self, plaintext: str) -> str:
        return await asyncio.to_thread(self.hash_sync, plaintext)

    async def verify(self, plaintext: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.verify_sync, plaintext, password_hash)
