"""
LifeSync Backend: Abstract Chat Completion Interface
======================================================

What:  The contract every chat-completion provider implements, plus the
       plain data types that cross it (messages, options, usage, result).
How:   Concrete implementations inherit from LLMService; today the only one
       is ChatCompletionGateway (OpenRouter wire format).
Who:   ReportOrchestrator depends on this interface, never on a provider.
When:  Called once per report generation, after quota and category checks.

Design Decision:
    The orchestrator receives an LLMService instance by injection. Tests pass
    a fake or an AsyncMock built from this interface; production passes the
    gateway constructed in the application lifespan.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence, Type

from pydantic import BaseModel

from lifesync.schemas.usage import UsageStatsSnapshot

VALID_ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    """One entry of the conversation sent to the model."""

    role: str
    content: str


@dataclass
class CompletionOptions:
    """
    Optional sampling parameters.

    `response_schema` is a pydantic model class; when set, the provider asks
    for strict JSON matching it and returns the validated instance in
    `CompletionResult.parsed`.
    """

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    response_schema: Optional[Type[BaseModel]] = None


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResult:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    response_id: Optional[str] = None
    parsed: Optional[BaseModel] = None


class LLMService(ABC):
    """
    Abstract interface for chat-completion providers.

    Contract:
        - complete() returns a CompletionResult or raises an LLMServiceError
          subclass whose `kind` tells the caller what went wrong
        - Implementations own their retry, circuit breaker and accounting
        - health_check() never raises
    """

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Raises:
            InvalidRequestError: Parameters rejected before any network call.
            SchemaInvalidError: The answer did not match `response_schema`.
            LLMServiceError: Any other classified upstream failure, after the
                retry budget for retryable kinds is exhausted.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability probe. Returns False instead of raising."""
        ...

    @abstractmethod
    def get_usage_stats(self) -> UsageStatsSnapshot:
        ...
