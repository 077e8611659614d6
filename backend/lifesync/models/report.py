"""
LifeSync Backend: Report SQLAlchemy Model
===========================================

What:  ORM model for the `reports` table.
Who:   Written by ReportStore (on-demand generation), counted by QuotaGuard.

Table Design:
    - Append-only: a generated report is never updated; deletion only sets
      `deleted_at` (soft delete, performed by the reports CRUD API).
    - generated_by: 'scheduled' (weekly job) or 'on_demand' (this pipeline).
      Only on_demand rows count towards the weekly quota, soft-deleted
      ones included.
    - categories_snapshot: JSON list of {"id", "name"} as they were at
      generation time; later renames do not rewrite history.
    - llm_model / system_prompt_version: provenance of the content.

Index on (user_id, generated_by, created_at):
    Serves the quota count "on_demand reports of this user in [start, end]".
"""

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base

GENERATED_BY_SCHEDULED = "scheduled"
GENERATED_BY_ON_DEMAND = "on_demand"


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    generated_by: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="scheduled | on_demand",
    )

    categories_snapshot: Mapped[List[Any]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    html: Mapped[str] = mapped_column(Text, nullable=False)
    text_version: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pdf_path: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    llm_model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    system_prompt_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    __table_args__ = (
        Index("idx_reports_user_kind_created", user_id, generated_by, created_at),
    )

    def __repr__(self) -> str:
        return (
            f"<Report(id={self.id}, generated_by='{self.generated_by}', "
            f"created_at='{self.created_at}')>"
        )
