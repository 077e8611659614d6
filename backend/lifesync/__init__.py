"""
LifeSync Backend: Application Package Initializer
=================================================

What: The `lifesync` package holds the on-demand report generation pipeline
      of the LifeSync reflection backend.
Who:  Imported by uvicorn (`lifesync.main:app`), Alembic, and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (Orchestration, LLM)     │  ← ReportOrchestrator, gateway,
    │                                     │    quota, idempotency
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The LLM side is split in two layers: ResilientApiClient owns transport
    concerns (timeouts, retries, circuit breaker) and ChatCompletionGateway
    owns the chat-completions wire contract. Nothing above the gateway knows
    the upstream request or response shape.
"""

__version__ = "1.0.0"
