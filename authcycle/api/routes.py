from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse

from authcycle.api.carrier import CookieCarrier
from authcycle.api.schemas import Envelope, ErrorBody, LoginRequest, LoginResponse
from authcycle.logging import get_correlation_id
from authcycle.service.auth import FlowResult
from authcycle.service.runtime import Runtime, get_runtime

router = APIRouter()


def _carrier(request: Request, runtime: Runtime) -> CookieCarrier:
    return CookieCarrier(
        request,
        name=runtime.settings.refresh_cookie_name,
        secure=runtime.settings.refresh_cookie_secure,
    )


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _flow_response(result: FlowResult, carrier: CookieCarrier) -> JSONResponse:
    if not result.ok or result.tokens is None:
        code = result.error.value if result.error else "unauthorized"
        envelope = Envelope(
            status="error", error=ErrorBody(code=code, message="unauthorized")
        )
        response = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=envelope.model_dump(mode="json"),
            headers={"WWW-Authenticate": "Bearer"},
        )
        return carrier.apply(response)
    tokens = result.tokens
    envelope = Envelope(
        status="ok",
        data=LoginResponse(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            access_expires_at=tokens.access_expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
        ),
    )
    response = JSONResponse(
        status_code=status.HTTP_200_OK, content=envelope.model_dump(mode="json")
    )
    return carrier.apply(response)


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request):
    """Exchange a username and password for an access/refresh token pair.

    Sets the refresh token cookie. Every failure is a 401 with the same body.
    """
    runtime = get_runtime()
    carrier = _carrier(request, runtime)
    result = await runtime.auth.login(
        body.username, body.password, carrier, request_id=get_correlation_id()
    )
    return _flow_response(result, carrier)


@router.get("/auth/refresh_tokens", response_model=Envelope, tags=["auth"])
async def refresh_tokens(request: Request):
    """Rotate the refresh token held in the cookie."""
    runtime = get_runtime()
    carrier = _carrier(request, runtime)
    result = await runtime.auth.refresh(carrier, request_id=get_correlation_id())
    return _flow_response(result, carrier)


@router.get("/auth/logout", status_code=status.HTTP_204_NO_CONTENT, tags=["auth"])
async def logout(
    request: Request,
    authorization: Optional[str] = Header(None),
    everywhere: bool = Query(False),
):
    """Clear the refresh cookie and, for an authenticated caller, revoke it.

    Always 204, including for anonymous or expired sessions.
    """
    runtime = get_runtime()
    carrier = _carrier(request, runtime)
    identity = runtime.auth.authenticate(_extract_bearer(authorization))
    await runtime.auth.logout(carrier, identity, everywhere=everywhere)
    return carrier.apply(Response(status_code=status.HTTP_204_NO_CONTENT))
