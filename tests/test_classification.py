"""Tests for failure classification."""

import asyncio
import json

import httpx
import pytest

from voice_shortcut.classification import (
    AuthError,
    ConnectionLost,
    MalformedResponse,
    NotRetryable,
    QuotaExceeded,
    RateLimited,
    ServerError,
    ServiceUnavailable,
    Timeout,
    TimeoutPhase,
    classify_exception,
    classify_status,
    parse_retry_after,
)
from voice_shortcut.errors import (
    EmptyInputError,
    IncorrectCredentialError,
    InvalidCredentialError,
    ModelUnavailableError,
    NotFoundError,
    PermissionDeniedError,
    UnexpectedResponseShapeError,
)


def error_body(message: str, details=None) -> bytes:
    error = {"code": 0, "message": message}
    if details is not None:
        error["details"] = details
    return json.dumps({"error": error}).encode()


class TestParseRetryAfter:
    """Tests for parse_retry_after()."""

    def test_header_any_case(self):
        """Test Retry-After is read case-insensitively."""
        assert parse_retry_after({"retry-after": "12"}) == 12.0
        assert parse_retry_after({"RETRY-AFTER": "3.5"}) == 3.5
        assert parse_retry_after(httpx.Headers({"Retry-After": "7"})) == 7.0

    def test_retry_info_detail(self):
        """Test retryDelay from the error details is used."""
        body = json.loads(
            error_body(
                "quota",
                [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "34s"}],
            )
        )
        assert parse_retry_after({}, body) == 34.0

    def test_header_wins_over_body(self):
        """Test the header takes precedence over the body."""
        body = json.loads(error_body("x", [{"retryDelay": "34s"}]))
        assert parse_retry_after({"Retry-After": "5"}, body) == 5.0

    def test_missing_or_invalid(self):
        """Test no hint or an unparseable one yields None."""
        assert parse_retry_after({}) is None
        assert parse_retry_after({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None
        assert parse_retry_after(None, {"error": {"details": [{"retryDelay": "soon"}]}}) is None


class TestClassifyStatus:
    """Tests for classify_status()."""

    @pytest.mark.parametrize(
        "status, expected",
        [
            (408, Timeout(TimeoutPhase.REQUEST)),
            (429, RateLimited(None)),
            (500, ServerError(500)),
            (502, ServerError(502)),
            (503, ServiceUnavailable()),
            (504, Timeout(TimeoutPhase.RESOURCE)),
        ],
    )
    def test_status_codes(self, status, expected):
        """Test status codes map to one classification each."""
        assert classify_status(status) == expected

    def test_auth_statuses(self):
        """Test 401 and 403 map to credential errors."""
        assert isinstance(classify_status(401).to_error(), InvalidCredentialError)
        assert isinstance(classify_status(403).to_error(), PermissionDeniedError)

    def test_api_key_message_wins(self):
        """Test a key-related message overrides a generic 400."""
        result = classify_status(400, error_body("API key not valid. Please pass a valid API key."))
        assert isinstance(result, AuthError)
        assert isinstance(result.to_error(), IncorrectCredentialError)
        assert not result.retryable

    def test_quota_message(self):
        """Test quota messages are quota exceeded with the server hint."""
        result = classify_status(
            429,
            error_body("You exceeded your current quota"),
            {"Retry-After": "20"},
        )
        assert result == QuotaExceeded(20.0)
        assert result.retryable

    def test_deadline_exceeded_is_gateway_timeout(self):
        """Test "Deadline exceeded" on 504 stays a retryable resource timeout."""
        result = classify_status(504, error_body("Deadline exceeded"))
        assert result == Timeout(TimeoutPhase.RESOURCE)
        assert result.retryable

    def test_rate_limit_message(self):
        """Test rate limit messages without a hint are not retryable."""
        result = classify_status(429, error_body("Rate limit reached for requests"))
        assert result == RateLimited(None)
        assert not result.retryable

    def test_model_unavailable(self):
        """Test an unsupported model on 400 maps to ModelUnavailableError."""
        result = classify_status(400, error_body("Model gemini-x is not supported for this call"))
        assert isinstance(result, NotRetryable)
        assert isinstance(result.to_error(), ModelUnavailableError)

    def test_not_found(self):
        """Test 404 is not retryable."""
        result = classify_status(404)
        assert not result.retryable
        assert isinstance(result.to_error(), NotFoundError)

    def test_garbage_body_tolerated(self):
        """Test a non-JSON error body falls back to the status code."""
        assert classify_status(503, b"<html>oops</html>") == ServiceUnavailable()


class TestClassifyException:
    """Tests for classify_exception()."""

    def test_timeouts(self):
        """Test request and resource timeouts are distinguished."""
        assert classify_exception(httpx.ConnectTimeout("x")) == Timeout(TimeoutPhase.REQUEST)
        assert classify_exception(httpx.ReadTimeout("x")) == Timeout(TimeoutPhase.REQUEST)
        assert classify_exception(httpx.WriteTimeout("x")) == Timeout(TimeoutPhase.RESOURCE)
        assert classify_exception(asyncio.TimeoutError()) == Timeout(TimeoutPhase.RESOURCE)

    def test_connection_errors(self):
        """Test transport failures are retryable connection losses."""
        result = classify_exception(httpx.ConnectError("refused"))
        assert isinstance(result, ConnectionLost)
        assert result.retryable
        assert isinstance(classify_exception(httpx.RemoteProtocolError("eof")), ConnectionLost)

    def test_speech_errors_pass_through(self):
        """Test already-classified errors are not reclassified."""
        error = EmptyInputError("nothing")
        result = classify_exception(error)
        assert result == NotRetryable(error)
        assert result.to_error() is error

    def test_malformed_response(self):
        """Test shape errors become MalformedResponse."""
        result = classify_exception(UnexpectedResponseShapeError("bad"))
        assert result == MalformedResponse("bad")
        assert not result.retryable

    def test_unknown_exception_not_retryable(self):
        """Test unexpected exceptions are not retried."""
        assert not classify_exception(ValueError("weird")).retryable
