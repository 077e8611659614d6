"""
LifeSync Backend: Note SQLAlchemy Model
=========================================

What:  ORM model for the `notes` table (user reflections filed under a category).
Who:   Read by NoteReader when assembling the LLM prompt for a report.
       Note CRUD itself is served by another part of the system.

Index on (user_id, category_id, created_at DESC):
    Serves the only query this package issues against notes:
    "newest N notes of this user in these categories".
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base


class Note(Base):
    """
    A single reflection note.

    Lifecycle:
        Created and edited through the notes API; soft-deleted by setting
        `deleted_at`. Soft-deleted notes never feed a report.
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("categories.id"),
        nullable=False,
    )

    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # TEXT: notes have no artificial length limit; the gateway truncates
    # prompt content instead.
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
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
        Index("idx_notes_user_category_created", user_id, category_id, created_at.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<Note(id={self.id}, category_id={self.category_id}, "
            f"created_at='{self.created_at}')>"
        )
