"""Tests for standardized error handling."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.exceptions import HTTPException

from script_runner.errors import (
    APIError,
    BadRequestError,
    ErrorResponse,
    PayloadTooLargeError,
    ServiceUnavailableError,
    _status_to_error_type,
    register_exception_handlers,
)
from script_runner.sandbox.exceptions import SandboxStartupError


class TestAPIError:
    """Test the APIError hierarchy."""

    def test_defaults_come_from_class(self):
        """Test an error without detail uses the class default."""
        error = BadRequestError()
        assert error.status_code == 400
        assert error.detail == "Invalid request"

    def test_context_is_kept(self):
        """Test extra keyword arguments become context."""
        error = PayloadTooLargeError(detail="too big", length=12)
        assert error.context == {"length": 12}
        assert error.to_response() == ErrorResponse(
            error="payload_too_large", detail="too big", context={"length": 12}
        )

    @pytest.mark.parametrize(
        "cls, status",
        [(BadRequestError, 400), (PayloadTooLargeError, 413), (ServiceUnavailableError, 503)],
    )
    def test_status_codes(self, cls, status):
        """Test each error carries its status code."""
        assert cls.status_code == status
        assert issubclass(cls, APIError)


class TestStatusMapping:
    """Test status code to error type mapping."""

    def test_known_codes(self):
        """Test known status codes map to names."""
        assert _status_to_error_type(404) == "not_found"
        assert _status_to_error_type(413) == "payload_too_large"

    def test_unknown_code(self):
        """Test unknown status codes fall back to a generic name."""
        assert _status_to_error_type(418) == "error"


@pytest.fixture
def error_app():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/bad")
    async def bad():
        raise BadRequestError(detail="nope", error_code="BAD")

    @app.get("/startup")
    async def startup():
        raise SandboxStartupError("spawn failed", "traceback text")

    @app.get("/http")
    async def http():
        raise HTTPException(status_code=404, detail="missing")

    return TestClient(app)


class TestHandlers:
    """Test the registered exception handlers."""

    def test_api_error_handler(self, error_app):
        """Test APIError renders the standard body."""
        response = error_app.get("/bad")
        assert response.status_code == 400
        assert response.json() == {"error": "bad_request", "detail": "nope", "error_code": "BAD"}

    def test_startup_error_hides_worker_output(self, error_app):
        """Test startup failures are a 503 without worker details."""
        response = error_app.get("/startup")
        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "SANDBOX_STARTUP_FAILED"
        assert "traceback" not in response.text

    def test_http_exception_handler(self, error_app):
        """Test HTTPException renders the standard body."""
        response = error_app.get("/http")
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "missing"}
