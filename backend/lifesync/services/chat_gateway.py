"""
LifeSync Backend: Chat Completion Gateway (OpenRouter)
========================================================

What:  The only component that knows the chat-completion wire contract.
       Validates and sanitizes requests, delegates the call to
       ResilientApiClient, parses the answer, and keeps usage statistics.
How:   OpenAI-compatible POST /chat/completions on OpenRouter. Structured
       output is requested as a strict `json_schema` response_format built
       from a pydantic model and validated with the same model.
Who:   Constructed once in the application lifespan (app.state.gateway) and
       injected into ReportOrchestrator.

Error Handling Chain:
    bad parameters          → InvalidRequestError, no network call
    upstream failure        → classified by ResilientApiClient (retried or not)
    2xx without content     → SchemaInvalidError
    content ≠ schema        → SchemaInvalidError (never retried automatically)

Usage accounting:
    Latency samples and failed attempts are recorded by the client per
    attempt; the gateway records one success (and its tokens) per completed
    call and one error per rejected response.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from lifesync.config import Settings
from lifesync.exceptions import InvalidRequestError, SchemaInvalidError
from lifesync.schemas.usage import CircuitSnapshot, UsageStatsSnapshot
from lifesync.services.api_client import BackoffWithJitter, ResilientApiClient
from lifesync.services.circuit_breaker import CircuitBreaker
from lifesync.services.llm_base import (
    VALID_ROLES,
    ChatMessage,
    CompletionOptions,
    CompletionResult,
    LLMService,
    TokenUsage,
)
from lifesync.services.transport import HttpTransport
from lifesync.services.usage_stats import UsageStats

logger = logging.getLogger(__name__)

# C0 controls and DEL, except tab (\x09), line feed (\x0a) and carriage return (\x0d)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)

MAX_TOKENS_LIMIT = 200_000

_UNSUPPORTED_STRICT_KEYWORDS = frozenset(
    {"minLength", "maxLength", "pattern", "format", "default", "minItems", "maxItems"}
)


def sanitize_content(content: str, max_chars: int = 10_000) -> str:
    """Strip control characters, trim, and cap the length."""
    cleaned = _CONTROL_CHARS.sub("", content or "").strip()
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars]
    return cleaned


def strict_json_schema(schema: Any) -> Any:
    """
    Rewrite a pydantic JSON schema into the subset strict structured output
    accepts: every object closed (additionalProperties false) with all of
    its properties required, and no value-constraint keywords. Constraints
    that are dropped here are still enforced when the answer is validated
    against the pydantic model.
    """
    if isinstance(schema, list):
        return [strict_json_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    result: Dict[str, Any] = {}
    for key, value in schema.items():
        if key in _UNSUPPORTED_STRICT_KEYWORDS:
            continue
        if key in ("properties", "$defs") and isinstance(value, dict):
            # Keys here are names, not keywords
            result[key] = {name: strict_json_schema(sub) for name, sub in value.items()}
        else:
            result[key] = strict_json_schema(value)
    if result.get("type") == "object" and isinstance(result.get("properties"), dict):
        result["additionalProperties"] = False
        result["required"] = list(result["properties"])
    return result


def strip_code_fence(content: str) -> str:
    stripped = content.strip()
    match = _CODE_FENCE.match(stripped)
    return match.group(1).strip() if match else stripped


class ChatCompletionGateway(LLMService):
    def __init__(
        self,
        client: ResilientApiClient,
        max_message_chars: int = 10_000,
    ):
        self.client = client
        self.max_message_chars = max_message_chars

    @classmethod
    def from_settings(cls, settings: Settings, transport: HttpTransport) -> "ChatCompletionGateway":
        """Wire a gateway, its client, breaker and usage stats from settings."""
        client = ResilientApiClient(
            transport,
            base_url=settings.openrouter_base_url,
            api_key=settings.openrouter_api_key,
            timeout=settings.openrouter_timeout,
            max_retries=settings.retry_max_retries,
            backoff=BackoffWithJitter(
                base=settings.retry_base_delay_ms / 1000,
                cap=settings.retry_max_delay_ms / 1000,
                jitter=settings.retry_jitter_ms / 1000,
            ),
            breaker=CircuitBreaker(
                failure_threshold=settings.cb_failure_threshold,
                recovery_timeout=settings.cb_recovery_timeout,
            ),
            usage_stats=UsageStats(cost_per_million_tokens=settings.llm_cost_per_million_tokens),
            app_url=settings.openrouter_app_url,
            app_title=settings.openrouter_app_title,
        )
        logger.info(
            "ChatCompletionGateway initialized: base_url=%s, retries=%d, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.openrouter_base_url,
            settings.retry_max_retries,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )
        return cls(client, max_message_chars=settings.llm_max_message_chars)

    # ── Validation ────────────────────────────────────────────────────────

    def _validate(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: CompletionOptions,
    ) -> None:
        errors: List[str] = []
        if not model or not model.strip():
            errors.append("model must be a non-empty string")
        if not messages:
            errors.append("messages must contain at least one message")
        for index, message in enumerate(messages or []):
            if message.role not in VALID_ROLES:
                errors.append(f"messages[{index}].role must be one of {', '.join(VALID_ROLES)}")
            if not isinstance(message.content, str):
                errors.append(f"messages[{index}].content must be a string")
        if options.temperature is not None and not 0 <= options.temperature <= 2:
            errors.append("temperature must be between 0 and 2")
        if options.max_tokens is not None and not 1 <= options.max_tokens <= MAX_TOKENS_LIMIT:
            errors.append(f"max_tokens must be between 1 and {MAX_TOKENS_LIMIT}")
        if options.top_p is not None and not 0 <= options.top_p <= 1:
            errors.append("top_p must be between 0 and 1")
        if errors:
            logger.warning("Rejected completion request locally: %s", "; ".join(errors))
            raise InvalidRequestError(errors=errors)

    def _build_body(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: CompletionOptions,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model.strip(),
            "messages": [
                {"role": m.role, "content": sanitize_content(m.content, self.max_message_chars)}
                for m in messages
            ],
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.response_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": options.response_schema.__name__,
                    "strict": True,
                    "schema": strict_json_schema(options.response_schema.model_json_schema()),
                },
            }
        return body

    # ── Public API ────────────────────────────────────────────────────────

    async def complete(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        options = options or CompletionOptions()
        self._validate(model, messages, options)
        body = self._build_body(model, messages, options)

        result = await self.client.send("POST", "/chat/completions", body)
        data = result.data if isinstance(result.data, dict) else {}

        content = self._extract_content(data)
        usage = self._extract_usage(data)

        parsed = None
        if options.response_schema is not None:
            try:
                parsed = options.response_schema.model_validate_json(strip_code_fence(content))
            except ValidationError as e:
                self.client.usage_stats.record_error()
                logger.warning(
                    "Structured output failed %s validation (%d errors)",
                    options.response_schema.__name__,
                    e.error_count(),
                )
                raise SchemaInvalidError(
                    errors=[err["msg"] for err in e.errors()[:10]],
                    context={"schema": options.response_schema.__name__},
                ) from e

        self.client.usage_stats.record_success(usage.total_tokens)
        logger.info(
            "Completion finished: model=%s, tokens=%d, attempts=%d, %.0fms",
            data.get("model") or model,
            usage.total_tokens,
            result.attempts,
            result.duration_ms,
        )
        return CompletionResult(
            text=content,
            usage=usage,
            model=data.get("model") or model,
            response_id=data.get("id"),
            parsed=parsed,
        )

    def _extract_content(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices")
        content = None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                content = message.get("content")
        if not isinstance(content, str):
            self.client.usage_stats.record_error()
            logger.warning("Completion response is missing choices[0].message.content")
            raise SchemaInvalidError(
                message="The AI provider returned a response without content",
                errors=["choices[0].message.content is missing"],
            )
        return content

    @staticmethod
    def _extract_usage(data: Dict[str, Any]) -> TokenUsage:
        raw = data.get("usage")
        if not isinstance(raw, dict):
            return TokenUsage()

        def _int(key: str) -> int:
            value = raw.get(key)
            return value if isinstance(value, int) and value >= 0 else 0

        prompt = _int("prompt_tokens")
        completion = _int("completion_tokens")
        total = _int("total_tokens") or prompt + completion
        return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    async def health_check(self) -> bool:
        """
        GET /models once, outside the breaker and usage accounting.

        Never raises.
        """
        try:
            status_code = await self.client.ping("GET", "/models")
        except Exception as e:
            logger.warning("LLM health check failed: %s", type(e).__name__)
            return False
        if not 200 <= status_code < 300:
            logger.warning("LLM health check failed: HTTP %d", status_code)
            return False
        return True

    def get_usage_stats(self) -> UsageStatsSnapshot:
        return self.client.usage_stats.snapshot()

    def reset_usage_stats(self) -> None:
        self.client.usage_stats.reset()
        logger.info("LLM usage statistics reset")

    def circuit_snapshot(self) -> CircuitSnapshot:
        return self.client.breaker.snapshot()
