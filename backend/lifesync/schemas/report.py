"""
LifeSync Backend: Report Request/Response Schemas
===================================================

What:  Pydantic models defining the report generation API contract, plus the
       structured-output shape the LLM is asked to produce.
How:   FastAPI validates request bodies against these models and serializes
       responses from ORM rows (`from_attributes`).
Who:   Route handlers (HTTP contract), ReportOrchestrator (ReportContent,
       GeneratedReport).

Design Decision:
    Schemas stay separate from SQLAlchemy models: the API exposes `model` and
    `prompt_version` where the table stores `llm_model` and
    `system_prompt_version`, and never exposes `user_id` or `deleted_at`.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class GenerateReportRequest(BaseModel):
    """
    Body of POST /api/reports/generate.

    include_categories:
        1 to 3 category ids, no duplicates. Authorization against the
        user's active categories happens in the orchestrator, not here.
    """

    include_categories: List[uuid.UUID] = Field(
        min_length=1,
        max_length=3,
        description="Categories the report should cover (1-3, unique)",
    )

    @field_validator("include_categories")
    @classmethod
    def validate_unique(cls, v: List[uuid.UUID]) -> List[uuid.UUID]:
        """Rejects duplicate ids so the client learns about its own bug."""
        if len(set(v)) != len(v):
            raise ValueError("include_categories must not contain duplicates")
        return v


# ══════════════════════════════════════════════════════════════════════════
# LLM Structured Output
# ══════════════════════════════════════════════════════════════════════════


class ReportContent(BaseModel):
    """
    JSON object the model must return (sent as a strict json_schema).

    html is the rendered report body; text_version is a plain-text rendition
    used by text-only delivery channels.
    """

    html: str = Field(description="Report body as an HTML fragment")
    text_version: str = Field(description="Plain-text version of the same report")

    model_config = {"extra": "forbid"}

    @field_validator("html")
    @classmethod
    def validate_html_not_blank(cls, v: str) -> str:
        # minLength is not accepted in a strict json_schema
        if not v.strip():
            raise ValueError("html must not be empty")
        return v


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class CategorySnapshot(BaseModel):
    id: uuid.UUID
    name: str


class GeneratedReport(BaseModel):
    """
    What:  A persisted report as seen by API clients.
    Who:   Returned by POST /api/reports/generate (201) and GET /api/reports/{id}.

    An idempotent replay returns the very same object (same id, same
    created_at) as the original generation.
    """

    id: uuid.UUID = Field(description="Report identifier")
    user_id: Optional[uuid.UUID] = Field(default=None, exclude=True)
    generated_by: str = Field(description="scheduled or on_demand")
    categories_snapshot: List[CategorySnapshot] = Field(
        description="Categories as named at generation time",
    )
    html: str
    text_version: Optional[str] = None
    model: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("llm_model", "model"),
        description="LLM that produced the content",
    )
    prompt_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("system_prompt_version", "prompt_version"),
    )
    created_at: datetime

    model_config = {"from_attributes": True, "protected_namespaces": ()}


class ErrorResponse(BaseModel):
    """
    Standardized error body for every non-2xx answer.

    error carries the ErrorKind value (e.g. "weekly_limit_exceeded") so the
    client can render a specific message.
    """

    error: str = Field(description="Machine-readable error kind")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    llm: str = Field(description="LLM status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
