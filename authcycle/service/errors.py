from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each class carries an HTTP ``status_code`` and a stable ``error_code``.
    Login and refresh never surface these directly; the orchestrator
    collapses them into a single unauthorized result.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Unknown username, wrong password, or inactive account."""
    error_code = "invalid_credentials"


class InvalidRefreshToken(AuthenticationError):
    """Refresh token is tampered, expired, consumed, revoked, or unknown."""
    error_code = "invalid_refresh_token"


class UserMismatch(AuthenticationError):
    """Refresh token claims name a different user than its backing record."""
    error_code = "user_mismatch"


class SignatureInvalidOrExpired(AuthenticationError):
    """Signed token failed signature, issuer, audience, type, or expiry checks."""
    error_code = "signature_invalid_or_expired"


class StorageUnavailable(ServiceError):
    """Backing store failed; the flow is aborted (503)."""
    status_code = 503
    error_code = "storage_unavailable"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "InvalidCredentials",
    "InvalidRefreshToken",
    "UserMismatch",
    "SignatureInvalidOrExpired",
    "StorageUnavailable",
]
