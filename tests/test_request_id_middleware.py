"""
Request ID Middleware Unit Tests

Tests for request ID generation and propagation.
"""

import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient


@pytest.fixture
def app_with_request_id():
    """Create a test app with request ID middleware."""
    from login_guard.middleware.request_id_middleware import RequestIdMiddleware

    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/test")
    async def test_route(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    @app.get("/error")
    async def error_route():
        raise ValueError("Test error")

    return app


@pytest.fixture
def request_id_client(app_with_request_id):
    return TestClient(app_with_request_id, raise_server_exceptions=False)


class TestRequestIdGeneration:
    """Tests for request ID generation."""

    def test_generates_request_id(self, request_id_client):
        response = request_id_client.get("/test")

        assert response.status_code == 200
        assert "X-Request-ID" in response.headers
        assert len(response.headers["X-Request-ID"]) == 36

    def test_uses_provided_request_id(self, request_id_client):
        response = request_id_client.get("/test", headers={"X-Request-ID": "trace-abc"})
        assert response.headers["X-Request-ID"] == "trace-abc"

    def test_request_id_in_request_state(self, request_id_client):
        response = request_id_client.get("/test")
        assert response.json()["request_id"] == response.headers["X-Request-ID"]

    def test_unique_ids_across_requests(self, request_id_client):
        first = request_id_client.get("/test").headers["X-Request-ID"]
        second = request_id_client.get("/test").headers["X-Request-ID"]
        assert first != second

    def test_error_response_returns_500(self, request_id_client):
        response = request_id_client.get("/error")
        assert response.status_code == 500

    def test_response_time_header(self, request_id_client):
        response = request_id_client.get("/test")
        assert response.headers["X-Response-Time"].endswith("ms")


class TestCompletionLogLevel:
    """Throttled and failed requests log above INFO."""

    @pytest.mark.parametrize("status_code,level", [
        (200, logging.INFO),
        (401, logging.INFO),
        (423, logging.WARNING),
        (429, logging.WARNING),
        (503, logging.ERROR),
    ])
    def test_level_by_status(self, status_code, level):
        from login_guard.middleware.request_id_middleware import completion_log_level

        assert completion_log_level(status_code) == level
