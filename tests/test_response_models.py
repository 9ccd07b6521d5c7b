"""
Response Models Tests
"""


class TestResponseHelpers:

    def test_success_response_dumps_payload_model(self):
        from login_guard.utils.response_models import LoginSuccessData, success_response

        body = success_response(data=LoginSuccessData(identity="alice"), message="Login successful")
        assert body == {
            "success": True,
            "data": {"identity": "alice"},
            "message": "Login successful",
        }

    def test_success_response_minimal(self):
        from login_guard.utils.response_models import success_response

        assert success_response() == {"success": True}

    def test_error_response_with_data(self):
        from login_guard.utils.response_models import InvalidCredentialsData, error_response

        body = error_response(
            "Invalid credentials", code="invalid_credentials",
            data=InvalidCredentialsData(remaining_attempts=0),
        )
        assert body == {
            "success": False,
            "error": "Invalid credentials",
            "code": "invalid_credentials",
            "data": {"remaining_attempts": 0},
        }

    def test_error_response_keeps_null_remaining_attempts(self):
        """Fail-open denials report remaining_attempts as null, not missing."""
        from login_guard.utils.response_models import InvalidCredentialsData, error_response

        body = error_response("Invalid credentials.", data=InvalidCredentialsData())
        assert body["data"] == {"remaining_attempts": None}
        assert "detail" not in body


class TestPayloadModels:

    def test_locked_data_from_seconds(self):
        from login_guard.utils.response_models import LockedData

        assert LockedData.from_seconds(870).model_dump() == {
            "remaining_seconds": 870,
            "remaining_minutes": 14,
        }

    def test_api_response_defaults(self):
        from login_guard.utils.response_models import APIResponse

        response = APIResponse()
        assert response.success is True
        assert response.data is None
