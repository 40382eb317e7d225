from __future__ import annotations

from typing import Optional, Protocol


class TokenCarrier(Protocol):
    """Transport-level holder of the refresh token (e.g. a cookie)."""

    def get_refresh_token(self) -> Optional[str]: ...

    def set_refresh_token(self, token: str, max_age_seconds: int) -> None: ...

    def clear(self) -> None: ...


class MemoryCarrier:
    """Carrier backed by a plain attribute, for tests and non-HTTP callers."""

    def __init__(self, refresh_token: Optional[str] = None) -> None:
        self.refresh_token = refresh_token
        self.max_age_seconds: Optional[int] = None
        self.cleared = False

    def get_refresh_token(self) -> Optional[str]:
        return self.refresh_token

    def set_refresh_token(self, token: str, max_age_seconds: int) -> None:
        self.refresh_token = token
        self.max_age_seconds = max_age_seconds
        self.cleared = False

    def clear(self) -> None:
        self.refresh_token = None
        self.max_age_seconds = None
        self.cleared = True
