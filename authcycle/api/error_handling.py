from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authcycle.api.schemas import Envelope, ErrorBody
from authcycle.logging import get_logger
from authcycle.service.errors import ServiceError
from authcycle.storage.errors import ConstraintViolation

logger = get_logger(__name__)


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str = "server_error",
) -> JSONResponse:
    envelope = Envelope(
        status="error", error=ErrorBody(code=code, message=message, details=details)
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-shaped handlers for domain, storage and validation errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        # Authentication failures never reveal which check failed
        if exc.status_code == 401:
            return _error_response(401, "unauthorized", code="unauthorized")
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.info(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            error_count=len(exc.errors()),
        )
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
            for err in exc.errors()
        ]
        return _error_response(422, "invalid request", details, code="validation_error")
