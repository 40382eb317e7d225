from __future__ import annotations

import asyncio
import json
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from authcycle.logging import get_logger
from authcycle.storage.common import (
    deserialize_token,
    deserialize_user,
    serialize_token,
    serialize_user,
)
from authcycle.storage.errors import ConstraintViolation, StoreUnavailable
from authcycle.storage.models import Token, TokenKind, User

_Snapshot = Optional[Tuple[int, Dict[str, Any]]]


class MemoryStore:
    """In-process user and refresh token store.

    Every mutation happens under a single ``RLock`` so that
    ``delete_token_if_present`` is an atomic check-and-delete even when
    flows run on several threads. When ``fs_root`` is given the state is
    mirrored to a JSON file and reloaded on construction.

    The file write runs in a worker thread, outside the data lock. A failed
    write raises ``StoreUnavailable``; creates and updates are rolled back,
    deletions are kept in memory so a consumed token stays consumed.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.tokens: Dict[str, Token] = {}
        # RLock so helpers can be nested within a locked section
        self._data_lock = threading.RLock()
        # Serializes file writes; snapshots older than the last write are dropped
        self._write_lock = threading.Lock()
        self._state_version = 0
        self._written_version = 0
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    # users
    async def create_user(
        self, username: str, password_hash: str, *, is_active: bool = True
    ) -> User:
        with self._data_lock:
            if any(existing.username == username for existing in self.users.values()):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                password_hash=password_hash,
                is_active=is_active,
            )
            self.users[user.id] = user
            snapshot = self._snapshot()
        try:
            await self._persist(snapshot)
        except StoreUnavailable:
            with self._data_lock:
                self.users.pop(user.id, None)
            raise
        return user

    async def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            previous = user.is_active
            user.is_active = is_active
            snapshot = self._snapshot()
        try:
            await self._persist(snapshot)
        except StoreUnavailable:
            with self._data_lock:
                user.is_active = previous
            raise
        return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.username == username), None
            )

    async def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    # refresh tokens
    async def create_token(self, token: Token) -> None:
        if token.kind != TokenKind.REFRESH:
            raise ConstraintViolation("only refresh tokens are persisted", {"kind": token.kind.value})
        with self._data_lock:
            if token.id in self.tokens:
                raise ConstraintViolation("token id already exists", {"token_id": token.id})
            if token.user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": token.user_id})
            self.tokens[token.id] = token
            snapshot = self._snapshot()
        try:
            await self._persist(snapshot)
        except StoreUnavailable:
            with self._data_lock:
                if self.tokens.get(token.id) is token:
                    del self.tokens[token.id]
            raise

    async def get_token(self, token_id: str) -> Optional[Token]:
        with self._data_lock:
            token = self.tokens.get(token_id)
        # Expired records are left for purge_expired_tokens
        if token is None or token.is_expired():
            return None
        return token

    async def delete_token_if_present(self, token_id: str) -> bool:
        with self._data_lock:
            token = self.tokens.pop(token_id, None)
            if token is None:
                return False
            snapshot = self._snapshot()
        await self._persist(snapshot)
        # An expired record is gone either way; report it as not deleted
        return not token.is_expired()

    async def delete_tokens_for_user(self, user_id: str) -> int:
        with self._data_lock:
            stale = [tid for tid, tok in self.tokens.items() if tok.user_id == user_id]
            for tid in stale:
                self.tokens.pop(tid, None)
            snapshot = self._snapshot() if stale else None
        await self._persist(snapshot)
        return len(stale)

    async def list_tokens_for_user(self, user_id: str) -> List[Token]:
        with self._data_lock:
            return [
                tok
                for tok in self.tokens.values()
                if tok.user_id == user_id and not tok.is_expired()
            ]

    async def purge_expired_tokens(self) -> int:
        with self._data_lock:
            expired = [tid for tid, tok in self.tokens.items() if tok.is_expired()]
            for tid in expired:
                self.tokens.pop(tid, None)
            snapshot = self._snapshot() if expired else None
        await self._persist(snapshot)
        if expired:
            self.logger.info("expired_tokens_purged", count=len(expired))
        return len(expired)

    async def close(self) -> None:
        return None

    # persistence
    def _snapshot(self) -> _Snapshot:
        """Capture the current state for writing; call with ``_data_lock`` held."""
        if self.fs_root is None:
            return None
        self._state_version += 1
        state = {
            "users": [serialize_user(u) for u in self.users.values()],
            "tokens": [serialize_token(t) for t in self.tokens.values()],
        }
        return self._state_version, state

    async def _persist(self, snapshot: _Snapshot) -> None:
        if snapshot is None:
            return
        version, state = snapshot
        try:
            await asyncio.to_thread(self._write_state, version, state)
        except OSError as exc:
            self.logger.error("memory_store_persist_failed", error=str(exc))
            raise StoreUnavailable("state file write failed", {"version": version}) from exc

    def _write_state(self, version: int, state: Dict[str, Any]) -> None:
        with self._write_lock:
            if version <= self._written_version:
                return
            path = self._state_path()
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(state))
            tmp_path.replace(path)
            self._written_version = version

    def _load_state(self) -> bool:
        path = self._state_path()
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except json.JSONDecodeError as exc:
            self.logger.error("memory_store_state_corrupt", path=str(path), error=str(exc))
            return False
        self.users = {u["id"]: deserialize_user(u) for u in data.get("users", [])}
        self.tokens = {t["id"]: deserialize_token(t) for t in data.get("tokens", [])}
        return True
