"""
LifeSync Backend: Resilient API Client
========================================

What:  Performs one logical HTTP call against the LLM provider with a
       per-attempt timeout, bounded retries, exponential backoff with jitter
       and a circuit breaker. Knows nothing about chat completions.
How:   tenacity drives the retry loop; every attempt goes through the
       circuit breaker and is classified by ErrorClassifier on failure.
Who:   Owned by ChatCompletionGateway (one client per gateway instance).

Resilience Strategy:
    1. before_call() on the breaker inside every attempt: an open circuit
       fails immediately, without a network call and without retrying
    2. asyncio.wait_for bounds each attempt's wall-clock time
    3. Retryable kinds (rate_limited, unavailable, timeout) are retried with
       backoff(n) = min(base * 2^n + uniform(0, jitter), cap), n = 0, 1, ...
    4. Retrying stops early once the breaker has opened
    5. Sleeps go through an injectable awaitable (asyncio.sleep by default),
       so cancellation of the inbound request interrupts the backoff

Credentials: the bearer token is added to outbound headers here and never
appears in log records.
"""

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from lifesync.exceptions import LLMServiceError, SchemaInvalidError
from lifesync.services.circuit_breaker import CircuitBreaker
from lifesync.services.error_classifier import ErrorClassifier
from lifesync.services.transport import HttpTransport, TransportResponse
from lifesync.services.usage_stats import UsageStats

logger = logging.getLogger(__name__)

SLOW_RESPONSE_MS = 10_000


# ══════════════════════════════════════════════════════════════════════════
# Backoff
# ══════════════════════════════════════════════════════════════════════════


class BackoffWithJitter(wait_base):
    """
    tenacity wait strategy: min(base * 2^n + uniform(0, jitter), cap).

    n is the zero-based retry index, so the first retry waits about `base`.
    All values are in seconds.
    """

    def __init__(
        self,
        base: float = 1.0,
        cap: float = 32.0,
        jitter: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self._rng = rng or random.Random()

    def __call__(self, retry_state: RetryCallState) -> float:
        retry_index = max(retry_state.attempt_number - 1, 0)
        delay = self.base * (2 ** retry_index) + self._rng.uniform(0, self.jitter)
        return min(delay, self.cap)


@dataclass
class ApiResult:
    status_code: int
    data: Any
    duration_ms: float
    attempts: int = 1


# ══════════════════════════════════════════════════════════════════════════
# Client
# ══════════════════════════════════════════════════════════════════════════


class ResilientApiClient:
    def __init__(
        self,
        transport: HttpTransport,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff: Optional[wait_base] = None,
        breaker: Optional[CircuitBreaker] = None,
        classifier: Optional[ErrorClassifier] = None,
        usage_stats: Optional[UsageStats] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        app_url: Optional[str] = None,
        app_title: Optional[str] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.transport = transport
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff or BackoffWithJitter()
        self.breaker = breaker or CircuitBreaker()
        self.classifier = classifier or ErrorClassifier()
        self.usage_stats = usage_stats or UsageStats()
        self._sleep = sleep
        self._clock = clock

        self._headers: Dict[str, str] = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if app_url:
            self._headers["HTTP-Referer"] = app_url
        if app_title:
            self._headers["X-Title"] = app_title

    async def send(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        *,
        max_retries: Optional[int] = None,
    ) -> ApiResult:
        """
        Issue one logical call and return the decoded JSON body.

        Args:
            method: HTTP method ("GET", "POST")
            path: Path relative to base_url, e.g. "/chat/completions"
            body: JSON-serializable request body
            max_retries: Per-call override of the retry budget

        Raises:
            CircuitBreakerOpenError: The circuit is open; nothing was sent.
            LLMServiceError: The classified error of the last attempt.
            SchemaInvalidError: A 2xx response whose body is not JSON.
        """
        budget = self.max_retries if max_retries is None else max(max_retries, 0)
        url = f"{self.base_url}/{path.lstrip('/')}"
        model = body.get("model") if isinstance(body, dict) else None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(budget + 1),
            wait=self.backoff,
            retry=retry_if_exception(self._should_retry),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

        result: Optional[ApiResult] = None
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(
                    method,
                    path,
                    url,
                    body,
                    model,
                    attempt.retry_state.attempt_number,
                )
        return result

    async def ping(self, method: str, path: str) -> int:
        """
        Single authenticated request for liveness checks.

        Bypasses the circuit breaker and usage statistics, so health checks
        neither close a failing circuit nor take the HalfOpen probe slot.
        Transport errors and timeouts propagate to the caller.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        response = await asyncio.wait_for(
            self.transport.request(method, url, self._headers, None),
            timeout=self.timeout,
        )
        return response.status_code

    def _should_retry(self, exc: BaseException) -> bool:
        if not isinstance(exc, LLMServiceError) or not exc.retryable:
            return False
        if self.breaker.is_open:
            logger.warning("Circuit opened during retries; giving up on %s", exc.kind.value)
            return False
        return True

    async def _attempt(
        self,
        method: str,
        path: str,
        url: str,
        body: Optional[Any],
        model: Optional[str],
        attempt_number: int,
    ) -> ApiResult:
        holds_slot = self.breaker.before_call()

        started = self._clock()
        try:
            response: TransportResponse = await asyncio.wait_for(
                self.transport.request(method, url, self._headers, body),
                timeout=self.timeout,
            )
        except asyncio.CancelledError:
            # Only the HalfOpen caller owns the slot
            if holds_slot:
                self.breaker.release_probe()
            raise
        except Exception as exc:
            duration_ms = (self._clock() - started) * 1000
            error = self.classifier.error_for_exception(exc, timeout_seconds=self.timeout)
            self._record_failure(method, path, attempt_number, duration_ms, error, None)
            raise error from exc

        duration_ms = response.duration_ms or (self._clock() - started) * 1000

        if not 200 <= response.status_code < 300:
            error = self.classifier.error_for_response(response, model=model)
            self._record_failure(
                method, path, attempt_number, duration_ms, error, response.status_code
            )
            raise error

        # The upstream answered; the breaker only tracks reachability.
        self.breaker.record_success()
        self.usage_stats.record_latency(duration_ms)

        try:
            data = json.loads(response.body) if response.body else {}
        except ValueError as exc:
            self.usage_stats.record_error()
            self._log_attempt(
                logging.WARNING, method, path, attempt_number, "schema_invalid",
                response.status_code, duration_ms,
            )
            raise SchemaInvalidError(
                message="The AI provider returned a response that is not valid JSON",
                errors=[str(exc)[:200]],
                context={"status_code": response.status_code},
            ) from exc

        self._log_attempt(
            logging.INFO, method, path, attempt_number, "success",
            response.status_code, duration_ms,
        )
        if duration_ms > SLOW_RESPONSE_MS:
            logger.warning(
                "Slow upstream response: %s %s took %.0fms",
                method,
                path,
                duration_ms,
            )

        return ApiResult(
            status_code=response.status_code,
            data=data,
            duration_ms=duration_ms,
            attempts=attempt_number,
        )

    def _record_failure(
        self,
        method: str,
        path: str,
        attempt_number: int,
        duration_ms: float,
        error: LLMServiceError,
        status_code: Optional[int],
    ) -> None:
        self.breaker.record_failure()
        self.usage_stats.record_latency(duration_ms)
        self.usage_stats.record_error()
        self._log_attempt(
            logging.WARNING, method, path, attempt_number, error.kind.value,
            status_code, duration_ms,
        )

    def _log_attempt(
        self,
        level: int,
        method: str,
        path: str,
        attempt_number: int,
        outcome: str,
        status_code: Optional[int],
        duration_ms: float,
    ) -> None:
        logger.log(
            level,
            "%s %s attempt=%d outcome=%s status=%s %.0fms",
            method,
            path,
            attempt_number,
            outcome,
            status_code if status_code is not None else "-",
            duration_ms,
            extra={
                "method": method,
                "path": path,
                "attempt": attempt_number,
                "outcome": outcome,
                "status": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
