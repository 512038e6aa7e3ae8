"""
Error handling tests.

CRITICAL: These tests verify that:
1. All errors return consistent shapes
2. Stack traces are never returned to clients
3. Correlation IDs are included in responses
"""

from fastapi import FastAPI, status
from fastapi.testclient import TestClient

from multilang.platform.errors import (
    AppError,
    ConcurrentUpdateError,
    ErrorHandlerMiddleware,
    InvalidWebhookSecretError,
    JobProcessingError,
    MissingParameterError,
    QuotaExceededError,
    SessionExpiredError,
    StoreUnavailableError,
    UpstreamAuthError,
    ValidationError,
    generate_correlation_id,
)


# ============================================================================
# TEST SUITE: ERROR CLASSES
# ============================================================================

class TestErrorClasses:
    """Test error class definitions."""

    def test_missing_parameter_is_400(self):
        error = MissingParameterError("code", "Missing Code")

        assert error.status_code == status.HTTP_400_BAD_REQUEST
        assert error.code == "MISSING_PARAMETER"
        assert error.message == "Missing Code"
        assert error.details == {"parameter": "code"}

    def test_missing_parameter_default_message(self):
        assert MissingParameterError("orgid").message == "Missing orgid"

    def test_session_expired_is_401(self):
        error = SessionExpiredError()

        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.code == "SESSION_EXPIRED"

    def test_invalid_webhook_secret_is_401(self):
        error = InvalidWebhookSecretError()

        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.code == "INVALID_WEBHOOK_SECRET"

    def test_quota_exceeded_is_402(self):
        error = QuotaExceededError("1000", requested=5, remaining=2)

        assert error.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert error.code == "QUOTA_EXCEEDED"
        assert error.details == {"requested": 5, "remaining": 2}

    def test_upstream_auth_failure_is_502(self):
        error = UpstreamAuthError()

        assert error.status_code == status.HTTP_502_BAD_GATEWAY
        assert error.code == "UPSTREAM_AUTH_FAILURE"

    def test_job_processing_failure_is_500(self):
        error = JobProcessingError("boom")

        assert error.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert error.code == "JOB_PROCESSING_FAILURE"

    def test_store_unavailable_is_503(self):
        assert StoreUnavailableError().status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_concurrent_update_is_409(self):
        assert ConcurrentUpdateError("k").status_code == status.HTTP_409_CONFLICT

    def test_error_shape_is_consistent(self):
        """CRITICAL: All errors return consistent shape."""
        errors = [
            ValidationError("test"),
            MissingParameterError("orgid"),
            SessionExpiredError(),
            InvalidWebhookSecretError(),
            QuotaExceededError("1", 1, 0),
            ConcurrentUpdateError("k"),
            JobProcessingError("x"),
            UpstreamAuthError(),
            StoreUnavailableError(),
        ]

        for error in errors:
            result = error.to_dict()

            assert set(result["error"]) == {"code", "message", "details"}
            assert isinstance(result["error"]["code"], str) and result["error"]["code"]
            assert isinstance(result["error"]["message"], str) and result["error"]["message"]
            assert isinstance(result["error"]["details"], dict)


# ============================================================================
# TEST SUITE: MIDDLEWARE
# ============================================================================

class TestErrorHandlerMiddleware:

    def _client(self):
        app = FastAPI()
        app.add_middleware(ErrorHandlerMiddleware)

        @app.get("/app-error")
        async def app_error():
            raise AppError(code="TEST", message="handled", status_code=418)

        @app.get("/crash")
        async def crash():
            raise RuntimeError("secret internal detail")

        @app.get("/ok")
        async def ok():
            return {"ok": True}

        return TestClient(app, raise_server_exceptions=False)

    def test_app_error_converted(self):
        response = self._client().get("/app-error")

        assert response.status_code == 418
        assert response.json()["error"]["code"] == "TEST"

    def test_unhandled_exception_hides_details(self):
        """CRITICAL: Stack traces and messages of unexpected errors never leak."""
        response = self._client().get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "secret internal detail" not in response.text
        assert "Traceback" not in response.text

    def test_correlation_id_propagated(self):
        response = self._client().get("/ok", headers={"X-Correlation-ID": "corr-1"})

        assert response.headers["X-Correlation-ID"] == "corr-1"

    def test_generate_correlation_id_unique(self):
        assert generate_correlation_id() != generate_correlation_id()
