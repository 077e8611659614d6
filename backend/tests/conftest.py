"""
LifeSync Backend: Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Inventory (function-scoped):
    ├── mock_db_session:  AsyncMock standing in for AsyncSession
    ├── fake_transport:   scripted HttpTransport that counts calls
    ├── recorded_sleeps:  list + awaitable replacing asyncio.sleep
    ├── fake_clock:       settable clock for breaker cooldowns
    ├── make_client:      factory for ResilientApiClient wired to the fakes
    ├── sqlite_session_factory: in-memory aiosqlite with the report tables
    └── test_client:      httpx AsyncClient over ASGITransport
"""

import json
import os
from typing import Any, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

# Override settings BEFORE any lifesync import: the engine and the settings
# singleton are created at import time.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OPENROUTER_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lifesync.database import Base
from lifesync.models.idempotency import IdempotencyKey
from lifesync.models.report import Report
from lifesync.services.api_client import BackoffWithJitter, ResilientApiClient
from lifesync.services.circuit_breaker import CircuitBreaker
from lifesync.services.transport import HttpTransport, TransportResponse
from lifesync.services.usage_stats import UsageStats


# ══════════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════════


def json_response(status_code: int, payload: Any = None, headers: Optional[Dict[str, str]] = None) -> TransportResponse:
    body = json.dumps(payload).encode() if payload is not None else b""
    return TransportResponse(status_code=status_code, body=body, headers=headers or {}, duration_ms=12.0)


def completion_payload(content: str, total_tokens: int = 150, model: str = "openai/gpt-4o-mini") -> Dict[str, Any]:
    return {
        "id": "gen-123",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": total_tokens - 50,
            "completion_tokens": 50,
            "total_tokens": total_tokens,
        },
    }


class FakeTransport(HttpTransport):
    """
    Replays a script of responses/exceptions, one per request.

    The last entry repeats once the script is exhausted.
    """

    def __init__(self, script: Optional[List[Union[TransportResponse, BaseException]]] = None):
        self.script: List[Union[TransportResponse, BaseException]] = list(script or [])
        self.calls: List[Dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def request(self, method, url, headers, body=None) -> TransportResponse:
        self.calls.append({"method": method, "url": url, "headers": dict(headers), "body": body})
        index = min(len(self.calls) - 1, len(self.script) - 1)
        outcome = self.script[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def mock_db_session():
    """
    Mock async database session.

    Usage:
        result = MagicMock()
        result.scalar_one.return_value = 2
        mock_db_session.execute.return_value = result
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def recorded_sleeps():
    """A list that collects every backoff delay, and the awaitable that fills it."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, sleep


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_client(fake_transport, recorded_sleeps, fake_clock):
    """
    Factory for a ResilientApiClient over the fake transport.

    Backoff uses base=1s, cap=32s, jitter=1s (the production defaults in
    seconds); sleeps are recorded instead of awaited.
    """
    _, sleep = recorded_sleeps

    def _make(max_retries: int = 3, failure_threshold: int = 5, recovery_timeout: float = 60):
        return ResilientApiClient(
            fake_transport,
            base_url="https://openrouter.test/api/v1/",
            api_key="sk-secret-token",
            timeout=5.0,
            max_retries=max_retries,
            backoff=BackoffWithJitter(base=1.0, cap=32.0, jitter=1.0),
            breaker=CircuitBreaker(
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                clock=fake_clock,
            ),
            usage_stats=UsageStats(cost_per_million_tokens=30.0),
            sleep=sleep,
            app_url="https://lifesync.test",
            app_title="LifeSync Tests",
        )

    return _make


@pytest_asyncio.fixture
async def sqlite_session_factory():
    """
    Session factory over a private in-memory SQLite database holding the
    reports and idempotency_keys tables (the rest use PostgreSQL types).
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: Base.metadata.create_all(
                sync_conn,
                tables=[Report.__table__, IdempotencyKey.__table__],
            )
        )
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    ASGITransport does not run the lifespan, so app.state.gateway and
    app.state.idempotency_store start as mocks; tests replace them or
    override dependencies as needed.
    """
    from lifesync.main import app

    app.state.gateway = MagicMock()
    app.state.idempotency_store = MagicMock()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
