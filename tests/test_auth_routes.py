"""
Auth Routes Tests

Login endpoint status codes and bodies through the full application stack.
"""

import pytest

LOGIN_URL = "/api/v1/auth/login"


def login(client, password="wrong", identity="alice@example.com"):
    return client.post(LOGIN_URL, json={"username_or_email": identity, "password": password})


class TestLoginEndpoint:

    def test_successful_login(self, test_client):
        response = login(test_client, password="correct-password")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"identity": "alice@example.com"}

    def test_invalid_credentials(self, test_client):
        response = login(test_client)

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "invalid_credentials"
        assert body["data"]["remaining_attempts"] == 4
        assert "Remaining attempts: 4" in body["error"]

    def test_lockout_returns_423(self, test_client):
        for _ in range(4):
            assert login(test_client).status_code == 401

        response = login(test_client)

        assert response.status_code == 423
        body = response.json()
        assert body["code"] == "locked"
        assert body["data"] == {"remaining_seconds": 900, "remaining_minutes": 15}
        assert "try again in 15 minutes and 0 seconds" in body["error"]

    def test_locked_account_rejects_correct_password(self, test_client, clock):
        for _ in range(5):
            login(test_client)
        clock.advance(30)

        response = login(test_client, password="correct-password")

        assert response.status_code == 423
        assert response.json()["data"]["remaining_seconds"] == 870
        assert "14 minutes and 30 seconds" in response.json()["error"]

    def test_identity_case_variants_share_lock(self, test_client):
        for _ in range(5):
            login(test_client, identity="Alice@Example.com")

        assert login(test_client, identity="alice@example.com").status_code == 423

    def test_validation_error_on_empty_password(self, test_client):
        response = test_client.post(LOGIN_URL, json={"username_or_email": "alice", "password": ""})
        assert response.status_code == 422

    def test_store_outage_fail_closed_returns_503(self, test_settings, failing_store, verifier, no_sleep):
        from dataclasses import replace
        from fastapi.testclient import TestClient
        from main import create_app

        settings = replace(test_settings, excluded_path_prefixes=("/api/v1/auth/login",))
        client = TestClient(create_app(settings=settings, store=failing_store, verifier=verifier, sleep=no_sleep))

        response = login(client, password="correct-password")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["code"] == "store_unavailable"

    def test_unexpected_error_is_sanitised(self, app):
        from fastapi.testclient import TestClient
        from unittest.mock import AsyncMock

        app.state.login_orchestrator.attempt = AsyncMock(side_effect=RuntimeError("secret internals"))

        response = login(TestClient(app))

        assert response.status_code == 500
        assert "secret internals" not in response.text


class TestLoginRateLimiting:

    def test_login_endpoint_is_admission_controlled(self, test_client):
        """The bucket (capacity 10) is spent before the lockout matters."""
        statuses = [login(test_client, identity=f"user{i}").status_code for i in range(11)]

        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
