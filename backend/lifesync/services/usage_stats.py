"""
LifeSync Backend: LLM Usage Accounting
========================================

Process-local counters for the chat-completion gateway: request count,
token consumption, error count and a rolling latency window. Mutated from
many concurrent requests, so every update takes the lock. Counters are
eventually consistent, not an audit trail.
"""

import threading
from collections import deque
from typing import Deque

from lifesync.schemas.usage import UsageStatsSnapshot

ROLLING_WINDOW = 100


class UsageStats:
    def __init__(self, cost_per_million_tokens: float = 30.0, window: int = ROLLING_WINDOW):
        self.cost_per_million_tokens = cost_per_million_tokens
        self._lock = threading.Lock()
        self._requests = 0
        self._tokens = 0
        self._errors = 0
        self._latencies: Deque[float] = deque(maxlen=window)

    def record_latency(self, duration_ms: float) -> None:
        with self._lock:
            self._latencies.append(duration_ms)

    def record_success(self, total_tokens: int) -> None:
        with self._lock:
            self._requests += 1
            self._tokens += max(int(total_tokens or 0), 0)

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    def snapshot(self) -> UsageStatsSnapshot:
        with self._lock:
            window = list(self._latencies)
            average = sum(window) / len(window) if window else 0.0
            return UsageStatsSnapshot(
                requests_count=self._requests,
                total_tokens_used=self._tokens,
                errors_count=self._errors,
                estimated_cost=round(self._tokens / 1_000_000 * self.cost_per_million_tokens, 6),
                average_response_time_ms=round(average, 2),
                rolling_window_size=len(window),
            )

    def reset(self) -> None:
        """Explicit operator action; nothing resets the counters implicitly."""
        with self._lock:
            self._requests = 0
            self._tokens = 0
            self._errors = 0
            self._latencies.clear()
