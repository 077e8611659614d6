"""
LifeSync Backend: Usage & Circuit Observability Schemas
=========================================================

What:  Read-only snapshots of the LLM gateway's in-memory accounting.
Who:   Produced by UsageStats / CircuitBreaker, returned by GET /api/usage.
"""

from typing import Optional

from pydantic import BaseModel, Field


class UsageStatsSnapshot(BaseModel):
    """
    Point-in-time copy of the gateway's usage counters.

    estimated_cost is a linear estimate (tokens / 1M * price); it is meant
    for dashboards, not for billing.
    """

    requests_count: int = Field(default=0, description="Successful completions since last reset")
    total_tokens_used: int = Field(default=0, description="Cumulative total_tokens reported upstream")
    errors_count: int = Field(default=0, description="Failed attempts and rejected responses")
    estimated_cost: float = Field(default=0.0, description="Estimated spend in USD")
    average_response_time_ms: float = Field(
        default=0.0,
        description="Mean latency over the rolling window",
    )
    rolling_window_size: int = Field(default=0, description="Latency samples currently in the window")


class CircuitSnapshot(BaseModel):
    state: str = Field(description="closed, open or half_open")
    consecutive_failures: int
    opened_at: Optional[float] = Field(
        default=None,
        description="Monotonic clock reading when the circuit last opened",
    )
    retry_after_seconds: Optional[int] = Field(
        default=None,
        description="Seconds until a probe is allowed (only while open)",
    )


class UsageResponse(BaseModel):
    """Operator view: usage counters plus the breaker they are gated by."""

    usage: UsageStatsSnapshot
    circuit: CircuitSnapshot
