"""
LifeSync Backend: Upstream Error Classifier
=============================================

What:  Maps a raw transport outcome (HTTP status or exception) to exactly one
       ErrorKind plus a retry verdict, and builds the matching exception.
How:   Explicit lookup on status codes and exception types. Error message
       text is never inspected to decide the kind.
Who:   Used by ResilientApiClient after every failed attempt.

Classification table:
    HTTP 401                         → auth_invalid       no retry
    HTTP 402                         → quota_exceeded     no retry
    HTTP 404                         → model_not_found    no retry
    HTTP 429                         → rate_limited       retry
    HTTP 5xx                         → unavailable        retry
    HTTP 400 / 422                   → invalid_request    no retry
    local timeout                    → timeout            retry
    connect/read/write failure       → unavailable        retry
    anything else                    → unavailable        no retry (+ warning)
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from lifesync.exceptions import (
    AuthInvalidError,
    ErrorKind,
    InvalidRequestError,
    LLMServiceError,
    LLMTimeoutError,
    ModelNotFoundError,
    QuotaExceededError,
    RateLimitedError,
    ServiceUnavailableError,
)
from lifesync.services.transport import TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    retryable: bool


_STATUS_TABLE: Dict[int, Classification] = {
    400: Classification(ErrorKind.INVALID_REQUEST, False),
    401: Classification(ErrorKind.AUTH_INVALID, False),
    402: Classification(ErrorKind.QUOTA_EXCEEDED, False),
    404: Classification(ErrorKind.MODEL_NOT_FOUND, False),
    422: Classification(ErrorKind.INVALID_REQUEST, False),
    429: Classification(ErrorKind.RATE_LIMITED, True),
}

_UNCLASSIFIED = Classification(ErrorKind.UNAVAILABLE, False)


def parse_retry_after(value: Optional[str]) -> int:
    """
    Seconds from a Retry-After header. Only the delta-seconds form is
    honoured; an absent or unparsable value yields the default.
    """
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = int(float(value.strip()))
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS
    return max(seconds, 0)


def _upstream_message(body: bytes) -> Optional[str]:
    """OpenRouter errors look like {"error": {"message": ..., "code": ...}}."""
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:500]
    return None


class ErrorClassifier:
    """Stateless; one instance per ResilientApiClient."""

    def classify_status(self, status_code: int) -> Classification:
        if status_code in _STATUS_TABLE:
            return _STATUS_TABLE[status_code]
        if 500 <= status_code <= 599:
            return Classification(ErrorKind.UNAVAILABLE, True)
        logger.warning("Unclassified upstream status %d treated as non-retryable", status_code)
        return _UNCLASSIFIED

    def classify_exception(self, exc: BaseException) -> Classification:
        if isinstance(exc, LLMServiceError):
            return Classification(exc.kind, exc.retryable)
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
            return Classification(ErrorKind.TIMEOUT, True)
        if isinstance(exc, httpx.TransportError):
            return Classification(ErrorKind.UNAVAILABLE, True)
        logger.warning(
            "Unclassified transport exception %s treated as non-retryable",
            type(exc).__name__,
        )
        return _UNCLASSIFIED

    # ── Exception builders ────────────────────────────────────────────────

    def error_for_response(
        self,
        response: TransportResponse,
        model: Optional[str] = None,
    ) -> LLMServiceError:
        """Build the exception for a non-2xx response."""
        classification = self.classify_status(response.status_code)
        context: Dict[str, Any] = {"status_code": response.status_code}
        upstream = _upstream_message(response.body)
        if upstream:
            context["upstream_message"] = upstream

        kind = classification.kind
        retryable = classification.retryable
        if kind is ErrorKind.AUTH_INVALID:
            return AuthInvalidError(context=context, retryable=retryable)
        if kind is ErrorKind.QUOTA_EXCEEDED:
            return QuotaExceededError(context=context, retryable=retryable)
        if kind is ErrorKind.MODEL_NOT_FOUND:
            return ModelNotFoundError(model_id=model or "unknown", context=context, retryable=retryable)
        if kind is ErrorKind.RATE_LIMITED:
            return RateLimitedError(
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                context=context,
                retryable=retryable,
            )
        if kind is ErrorKind.INVALID_REQUEST:
            return InvalidRequestError(
                message="The AI provider rejected the request as invalid",
                errors=[upstream] if upstream else None,
                context=context,
                retryable=retryable,
            )
        return ServiceUnavailableError(context=context, retryable=retryable)

    def error_for_exception(
        self,
        exc: BaseException,
        timeout_seconds: float,
    ) -> LLMServiceError:
        """Build the exception for a failed exchange (no HTTP response)."""
        if isinstance(exc, LLMServiceError):
            return exc
        classification = self.classify_exception(exc)
        context: Dict[str, Any] = {"error_type": type(exc).__name__}
        if classification.kind is ErrorKind.TIMEOUT:
            return LLMTimeoutError(
                timeout_seconds=timeout_seconds,
                context=context,
                retryable=classification.retryable,
            )
        return ServiceUnavailableError(context=context, retryable=classification.retryable)
