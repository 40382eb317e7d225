from __future__ import annotations

from typing import List, Optional, Tuple

from fastapi import Request, Response


class CookieCarrier:
    """Refresh token carrier backed by an HttpOnly cookie.

    Reads come from the incoming request. Writes are recorded and applied
    to whichever response the route ends up returning, so a failed flow can
    still clear the cookie on its error response.
    """

    def __init__(self, request: Request, *, name: str, secure: bool = True) -> None:
        self.name = name
        self.secure = secure
        self._incoming = request.cookies.get(name) or None
        self._ops: List[Tuple[str, Optional[str], int]] = []

    def get_refresh_token(self) -> Optional[str]:
        return self._incoming

    def set_refresh_token(self, token: str, max_age_seconds: int) -> None:
        self._ops.append(("set", token, max_age_seconds))

    def clear(self) -> None:
        self._ops.append(("clear", None, 0))

    def apply(self, response: Response) -> Response:
        for op, value, max_age in self._ops:
            if op == "set":
                response.set_cookie(
                    self.name,
                    value or "",
                    httponly=True,
                    secure=self.secure,
                    samesite="lax",
                    max_age=max_age,
                    path="/",
                )
            else:
                response.delete_cookie(
                    self.name, path="/", secure=self.secure, samesite="lax"
                )
        return response
