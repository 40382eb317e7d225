"""Tests for the error envelope and the exception handlers.

Every error response has the shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<text>", "details": <object|array|null>},
    "request_id": "<id>"
}
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from authcycle.api.error_handling import _error_response, register_exception_handlers
from authcycle.api.schemas import Envelope, ErrorBody, LoginRequest
from authcycle.service.errors import (
    InvalidCredentials,
    ServiceError,
    SignatureInvalidOrExpired,
    StorageUnavailable,
)
from authcycle.storage.errors import ConstraintViolation


class _Payload(BaseModel):
    count: int


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict():
        raise ConstraintViolation("username already exists", {"field": "username"})

    @app.get("/credentials")
    async def credentials():
        raise InvalidCredentials("invalid credentials")

    @app.get("/signature")
    async def signature():
        raise SignatureInvalidOrExpired("invalid token")

    @app.get("/storage")
    async def storage():
        raise StorageUnavailable("refresh token could not be stored")

    @app.get("/teapot")
    async def teapot():
        raise ServiceError("short and stout", status_code=418, error_code="teapot")

    @app.post("/payload")
    async def payload(body: _Payload):
        return {"count": body.count}

    return TestClient(app)


class TestEnvelope:
    """Tests for the Envelope and ErrorBody models."""

    def test_error_envelope(self):
        envelope = Envelope(status="error", error=ErrorBody(code="unauthorized", message="x"))

        assert envelope.error.code == "unauthorized"
        assert envelope.data is None

    def test_request_id_is_filled(self):
        """Envelope always carries a request_id."""
        assert Envelope(status="ok").request_id

    def test_custom_request_id(self):
        assert Envelope(status="ok", request_id="req-1").request_id == "req-1"

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            Envelope(status="pending")

    def test_error_response_helper(self):
        response = _error_response(409, "conflict", {"field": "username"}, code="conflict")

        assert response.status_code == 409


class TestLoginRequest:
    def test_username_is_stripped(self):
        assert LoginRequest(username="  alice ", password="pw").username == "alice"

    @pytest.mark.parametrize(
        "payload",
        [
            {"username": "", "password": "pw"},
            {"username": "   ", "password": "pw"},
            {"username": "alice", "password": ""},
            {"username": "a" * 256, "password": "pw"},
            {"username": "alice"},
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            LoginRequest(**payload)


class TestHandlers:
    """Tests for the registered exception handlers."""

    def test_constraint_violation_is_409(self, client):
        response = client.get("/conflict")

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "conflict"
        assert body["error"]["details"] == {"field": "username"}

    @pytest.mark.parametrize("path", ["/credentials", "/signature"])
    def test_authentication_errors_are_generic(self, client, path):
        """Authentication failures never say which check failed."""
        response = client.get(path)

        assert response.status_code == 401
        assert response.json()["error"] == {
            "code": "unauthorized",
            "message": "unauthorized",
            "details": None,
        }

    def test_storage_unavailable_is_503(self, client):
        response = client.get("/storage")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "storage_unavailable"

    def test_custom_service_error(self, client):
        response = client.get("/teapot")

        assert response.status_code == 418
        assert response.json()["error"]["code"] == "teapot"

    def test_validation_error_is_422_with_details(self, client):
        response = client.post("/payload", json={"count": "many"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"]["code"] == "validation_error"
        assert body["error"]["details"][0]["loc"] == ["body", "count"]
