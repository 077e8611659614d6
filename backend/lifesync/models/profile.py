"""
LifeSync Backend: Profile & Preferences Models
================================================

What:  Per-user rows read by UserContextService to build the authorization
       context of a report request.

    profiles.timezone            → IANA zone used for the weekly quota window
    preferences.active_categories → categories the user may report on
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import DateTime, String, Uuid, text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)

    # IANA timezone name, e.g. "Europe/Warsaw"
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        server_default=text("'UTC'"),
    )

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

    def __repr__(self) -> str:
        return f"<Profile(user_id={self.user_id}, timezone='{self.timezone}')>"


class Preferences(Base):
    """Report preferences; only `active_categories` matters to this package."""

    __tablename__ = "preferences"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)

    # PostgreSQL uuid[]; the weekly report job and the on-demand generator
    # both restrict themselves to these categories.
    active_categories: Mapped[List[uuid.UUID]] = mapped_column(
        ARRAY(Uuid),
        nullable=False,
        default=list,
        server_default=text("'{}'"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Preferences(user_id={self.user_id}, active={len(self.active_categories or [])})>"
