"""
LifeSync Backend: ErrorClassifier Unit Tests
==============================================

What we test:
    ✅ Every row of the status table (kind + retry verdict)
    ✅ Timeouts and network failures
    ✅ Unknown statuses/exceptions default to non-retryable unavailable
    ✅ Built exceptions carry Retry-After and upstream details
"""

import asyncio

import httpx
import pytest

from conftest import json_response
from lifesync.exceptions import (
    AuthInvalidError,
    ErrorKind,
    InvalidRequestError,
    LLMTimeoutError,
    ModelNotFoundError,
    QuotaExceededError,
    RateLimitedError,
    ServiceUnavailableError,
)
from lifesync.services.error_classifier import ErrorClassifier, parse_retry_after


class TestClassifyStatus:
    def setup_method(self):
        self.classifier = ErrorClassifier()

    @pytest.mark.parametrize(
        "status, kind, retryable",
        [
            (401, ErrorKind.AUTH_INVALID, False),
            (402, ErrorKind.QUOTA_EXCEEDED, False),
            (404, ErrorKind.MODEL_NOT_FOUND, False),
            (429, ErrorKind.RATE_LIMITED, True),
            (500, ErrorKind.UNAVAILABLE, True),
            (502, ErrorKind.UNAVAILABLE, True),
            (503, ErrorKind.UNAVAILABLE, True),
            (400, ErrorKind.INVALID_REQUEST, False),
            (422, ErrorKind.INVALID_REQUEST, False),
        ],
    )
    def test_status_table(self, status, kind, retryable):
        result = self.classifier.classify_status(status)
        assert result.kind is kind
        assert result.retryable is retryable

    def test_unknown_status_is_unavailable_and_not_retried(self, caplog):
        result = self.classifier.classify_status(418)
        assert result.kind is ErrorKind.UNAVAILABLE
        assert result.retryable is False
        assert "Unclassified upstream status 418" in caplog.text


class TestClassifyException:
    def setup_method(self):
        self.classifier = ErrorClassifier()

    @pytest.mark.parametrize(
        "exc",
        [asyncio.TimeoutError(), TimeoutError(), httpx.ReadTimeout("slow")],
    )
    def test_timeouts_are_retryable(self, exc):
        result = self.classifier.classify_exception(exc)
        assert result.kind is ErrorKind.TIMEOUT
        assert result.retryable is True

    def test_connect_error_is_retryable_unavailable(self):
        result = self.classifier.classify_exception(httpx.ConnectError("refused"))
        assert result.kind is ErrorKind.UNAVAILABLE
        assert result.retryable is True

    def test_unknown_exception_is_not_retried(self, caplog):
        result = self.classifier.classify_exception(KeyError("boom"))
        assert result.kind is ErrorKind.UNAVAILABLE
        assert result.retryable is False
        assert "KeyError" in caplog.text


class TestErrorBuilders:
    def setup_method(self):
        self.classifier = ErrorClassifier()

    def test_401_builds_auth_invalid(self):
        error = self.classifier.error_for_response(json_response(401, {"error": {"message": "bad key"}}))
        assert isinstance(error, AuthInvalidError)
        assert error.retryable is False
        assert error.context["upstream_message"] == "bad key"

    def test_402_builds_quota_exceeded(self):
        error = self.classifier.error_for_response(json_response(402))
        assert isinstance(error, QuotaExceededError)
        assert error.kind is ErrorKind.QUOTA_EXCEEDED

    def test_404_names_the_model(self):
        error = self.classifier.error_for_response(json_response(404), model="acme/unknown")
        assert isinstance(error, ModelNotFoundError)
        assert error.model_id == "acme/unknown"

    def test_429_carries_retry_after(self):
        error = self.classifier.error_for_response(json_response(429, headers={"retry-after": "17"}))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 17
        assert error.retryable is True

    def test_429_without_header_defaults_to_60(self):
        error = self.classifier.error_for_response(json_response(429))
        assert error.retry_after == 60

    def test_5xx_builds_retryable_unavailable(self):
        error = self.classifier.error_for_response(json_response(503))
        assert isinstance(error, ServiceUnavailableError)
        assert error.retryable is True

    def test_400_builds_invalid_request(self):
        error = self.classifier.error_for_response(json_response(400, {"error": {"message": "bad"}}))
        assert isinstance(error, InvalidRequestError)
        assert error.errors == ["bad"]

    def test_timeout_exception_builds_timeout_error(self):
        error = self.classifier.error_for_exception(asyncio.TimeoutError(), timeout_seconds=5.0)
        assert isinstance(error, LLMTimeoutError)
        assert error.timeout_seconds == 5.0
        assert error.status_code == 504

    def test_non_json_error_body_is_tolerated(self):
        response = json_response(500)
        response.body = b"<html>Bad Gateway</html>"
        error = self.classifier.error_for_response(response)
        assert "upstream_message" not in error.context


@pytest.mark.parametrize(
    "value, expected",
    [(None, 60), ("", 60), ("5", 5), ("2.5", 2), ("soon", 60), ("-3", 0)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
