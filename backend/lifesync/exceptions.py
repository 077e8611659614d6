"""
LifeSync Backend: Custom Exception Hierarchy
==============================================

What:  Application-specific exceptions for the report generation pipeline.
How:   Each exception carries a message, an optional context dict, a closed
       `ErrorKind` and the HTTP status the global handlers answer with.
Who:   Raised by services; caught by the handlers registered in main.py.

Exception Hierarchy:
    LifeSyncError (base)
    ├── LLMServiceError                  (upstream LLM failures, carry `retryable`)
    │   ├── AuthInvalidError             → 502  auth_invalid
    │   ├── QuotaExceededError           → 503  quota_exceeded (LLM billing)
    │   ├── ModelNotFoundError           → 502  model_not_found
    │   ├── RateLimitedError             → 503  rate_limited
    │   ├── ServiceUnavailableError      → 503  unavailable
    │   │   └── CircuitBreakerOpenError  → 503  unavailable (no network call made)
    │   ├── LLMTimeoutError              → 504  timeout
    │   ├── InvalidRequestError          → 400  invalid_request
    │   └── SchemaInvalidError           → 502  schema_invalid
    ├── WeeklyLimitExceededError         → 409  weekly_limit_exceeded
    ├── InvalidCategoriesError           → 409  invalid_categories
    ├── PersistenceFailedError           → 500  persistence_failed
    └── NotFoundError                    → 404  not_found

The orchestrator never converts one kind into another: whatever the gateway
raises reaches the HTTP layer with its original kind.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID


class ErrorKind(str, Enum):
    """Closed taxonomy of failure kinds surfaced to callers."""

    AUTH_INVALID = "auth_invalid"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    MODEL_NOT_FOUND = "model_not_found"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INVALID_REQUEST = "invalid_request"
    SCHEMA_INVALID = "schema_invalid"
    WEEKLY_LIMIT_EXCEEDED = "weekly_limit_exceeded"
    INVALID_CATEGORIES = "invalid_categories"
    PERSISTENCE_FAILED = "persistence_failed"
    NOT_FOUND = "not_found"


class LifeSyncError(Exception):
    """
    Base exception for all LifeSync application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info; handlers decide what is exposed
        kind:     ErrorKind of this failure (class attribute)
        status_code: HTTP status used by the global handlers (class attribute)
    """

    kind: ErrorKind = ErrorKind.UNAVAILABLE
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ══════════════════════════════════════════════════════════════════════════
# LLM Errors
# ══════════════════════════════════════════════════════════════════════════


class LLMServiceError(LifeSyncError):
    """
    Base class for failures of the upstream chat-completion service.

    `retryable` is decided by ErrorClassifier when the error is built from a
    transport outcome; subclasses only provide the default verdict.
    """

    retryable_default: bool = False
    status_code = 503

    def __init__(
        self,
        message: str = "The AI report service is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message=message, context=context)
        self.retryable = self.retryable_default if retryable is None else retryable


class AuthInvalidError(LLMServiceError):
    """HTTP 401 from the provider: the API key is invalid or revoked."""

    kind = ErrorKind.AUTH_INVALID
    status_code = 502

    def __init__(self, context: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None):
        super().__init__(
            message="The AI provider rejected our credentials",
            context=context,
            retryable=retryable,
        )


class QuotaExceededError(LLMServiceError):
    """HTTP 402 from the provider: the account's credit quota is depleted."""

    kind = ErrorKind.QUOTA_EXCEEDED
    status_code = 503

    def __init__(self, context: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None):
        super().__init__(
            message="The AI provider's usage quota has been exceeded",
            context=context,
            retryable=retryable,
        )


class ModelNotFoundError(LLMServiceError):
    """HTTP 404 from the provider: the configured model is unknown."""

    kind = ErrorKind.MODEL_NOT_FOUND
    status_code = 502

    def __init__(
        self,
        model_id: str = "unknown",
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        ctx = context or {}
        ctx.setdefault("model", model_id)
        super().__init__(
            message=f"Model '{model_id}' was not found or is unavailable",
            context=ctx,
            retryable=retryable,
        )
        self.model_id = model_id


class RateLimitedError(LLMServiceError):
    """
    HTTP 429 from the provider.

    retry_after comes from the upstream Retry-After header when present.
    """

    kind = ErrorKind.RATE_LIMITED
    retryable_default = True

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(
            message=f"The AI provider is rate limiting requests. Retry after {retry_after} seconds.",
            context=ctx,
            retryable=retryable,
        )
        self.retry_after = retry_after


class ServiceUnavailableError(LLMServiceError):
    """HTTP 5xx, network failure, or an unclassified upstream outcome."""

    kind = ErrorKind.UNAVAILABLE
    retryable_default = True


class CircuitBreakerOpenError(ServiceUnavailableError):
    """
    Raised when the circuit breaker rejects a call.

    No network call was made and no retry budget was consumed.
    """

    retryable_default = False

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                "The AI report service is temporarily unavailable due to repeated failures. "
                f"It will be retried in approximately {recovery_time} seconds."
            ),
            context=ctx,
            retryable=False,
        )
        self.recovery_time = recovery_time


class LLMTimeoutError(LLMServiceError):
    """A single attempt exceeded the configured wall-clock timeout."""

    kind = ErrorKind.TIMEOUT
    status_code = 504
    retryable_default = True

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=f"The AI provider did not answer within {timeout_seconds:g} seconds",
            context=ctx,
            retryable=retryable,
        )
        self.timeout_seconds = timeout_seconds


class InvalidRequestError(LLMServiceError):
    """
    The request was rejected before (or by) the provider as malformed.

    Raised locally by the gateway's parameter validation, so no network
    round trip is spent on it.
    """

    kind = ErrorKind.INVALID_REQUEST
    status_code = 400

    def __init__(
        self,
        message: str = "Invalid request parameters",
        errors: Optional[Sequence[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        ctx = context or {}
        self.errors: List[str] = list(errors or [])
        if self.errors:
            ctx["errors"] = self.errors
        super().__init__(message=message, context=ctx, retryable=retryable)


class SchemaInvalidError(LLMServiceError):
    """The provider answered 2xx but the content failed the expected schema."""

    kind = ErrorKind.SCHEMA_INVALID
    status_code = 502

    def __init__(
        self,
        message: str = "The AI provider returned a response in an unexpected format",
        errors: Optional[Sequence[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        ctx = context or {}
        self.errors: List[str] = list(errors or [])
        if self.errors:
            ctx["errors"] = self.errors
        super().__init__(message=message, context=ctx, retryable=retryable)


# ══════════════════════════════════════════════════════════════════════════
# Orchestration Errors
# ══════════════════════════════════════════════════════════════════════════


class WeeklyLimitExceededError(LifeSyncError):
    """
    The user already generated `limit` on-demand reports this local week.

    Carries the exact window so the client can tell the user when the quota
    resets.
    """

    kind = ErrorKind.WEEKLY_LIMIT_EXCEEDED
    status_code = 409

    def __init__(
        self,
        count: int,
        limit: int,
        week_start: datetime,
        week_end: datetime,
    ):
        super().__init__(
            message=f"Maximum {limit} on-demand reports allowed per week",
            context={
                "count": count,
                "limit": limit,
                "week_start": week_start.isoformat(),
                "week_end": week_end.isoformat(),
            },
        )
        self.count = count
        self.limit = limit
        self.week_start = week_start
        self.week_end = week_end


class InvalidCategoriesError(LifeSyncError):
    """One or more requested categories are missing, inactive or not authorized."""

    kind = ErrorKind.INVALID_CATEGORIES
    status_code = 409

    def __init__(self, invalid_ids: Sequence[UUID]):
        self.invalid_ids: List[UUID] = list(invalid_ids)
        super().__init__(
            message="One or more categories are invalid or not authorized",
            context={"invalid_ids": [str(i) for i in self.invalid_ids]},
        )


class PersistenceFailedError(LifeSyncError):
    """
    Writing the generated report failed; no partial report is exposed.

    The message returned to the client is always generic; database details
    stay in the server log.
    """

    kind = ErrorKind.PERSISTENCE_FAILED
    status_code = 500

    def __init__(
        self,
        message: str = "The report could not be saved. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(LifeSyncError):
    """A requested resource does not exist (or is not visible to the caller)."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
