"""Tests for API error classification."""

from debrid_connector.api_clients.errors import (
    ApiError,
    AuthenticationExpired,
    ErrorClassifier,
    ErrorSeverity,
    HttpClientError,
    HttpServerError,
    NetworkError,
    RateLimitExceeded,
    RequestTimeoutError,
    REAUTH_ACTION,
)


class TestErrorClassifier:
    """Classification of codes into retry, reauth and severity."""

    def setup_method(self):
        self.classifier = ErrorClassifier()

    def test_token_codes_require_reauth(self):
        for code in ("bad_token", "token_expired", "HTTP_401"):
            context = self.classifier.classify(ApiError(code=code, message="x"))
            assert context.requires_reauth
            assert not context.should_retry
            assert context.severity == ErrorSeverity.CRITICAL
            assert context.action == REAUTH_ACTION

    def test_server_and_transport_codes_are_retryable(self):
        for code in ("HTTP_429", "HTTP_500", "HTTP_503", "NETWORK_ERROR", "REQUEST_TIMEOUT", "no_server"):
            assert self.classifier.classify(ApiError(code=code, message="x")).should_retry

    def test_premium_codes_are_high_severity(self):
        context = self.classifier.classify(ApiError(code="premium_needed", message="x"))

        assert context.severity == ErrorSeverity.HIGH
        assert context.action == "Upgrade to Real-Debrid Premium for this feature"
        assert not context.should_retry

    def test_unknown_code_keeps_its_own_message(self):
        context = self.classifier.classify(ApiError(code="something_new", message="Remote said no"))

        assert context.message == "Remote said no"
        assert context.severity == ErrorSeverity.LOW
        assert context.action is None

    def test_known_code_uses_friendly_message(self):
        context = self.classifier.classify(ApiError(code="HTTP_503", message="raw"))

        assert context.message == "Real-Debrid service is under maintenance."
        assert context.severity == ErrorSeverity.MEDIUM


class TestApiError:
    """Construction of errors from responses."""

    def test_from_response_prefers_api_error_code(self):
        error = ApiError.from_response(401, {"error": "bad_token", "error_code": 8})

        assert error.code == "bad_token"
        assert error.numeric_code == 8

    def test_from_response_falls_back_to_status(self):
        error = ApiError.from_response(502, "<html>Bad Gateway</html>")

        assert error.code == "HTTP_502"
        assert error.numeric_code is None
        assert "Bad Gateway" in error.message

    def test_exception_mapping(self):
        classifier = ErrorClassifier()
        cases = [
            (ApiError.timeout(10), 0, RequestTimeoutError),
            (ApiError.network(OSError("reset")), 0, NetworkError),
            (ApiError(code="bad_token", message="x"), 401, AuthenticationExpired),
            (ApiError(code="HTTP_429", message="x"), 429, RateLimitExceeded),
            (ApiError(code="HTTP_500", message="x"), 500, HttpServerError),
            (ApiError(code="HTTP_404", message="x"), 404, HttpClientError),
        ]
        for error, status, expected in cases:
            exc = classifier.exception_for(error, status)
            assert isinstance(exc, expected)
            assert exc.api_error is error
