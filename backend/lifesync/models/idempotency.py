"""
LifeSync Backend: Idempotency Key Model
=========================================

What:  (user_id, key) → report_id mapping written after a successful
       on-demand generation, so a retried request returns the same report.
Who:   Owned exclusively by IdempotencyStore.

Constraints:
    - UNIQUE (user_id, key): the database decides the winner when two
      identical requests race.
    - expires_at: rows are invisible once past it (checked at read time);
      idx_idempotency_keys_expires_at serves the periodic purge.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    key: Mapped[str] = mapped_column(String(255), nullable=False)

    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "key", name="unique_user_idempotency_key"),
        Index("idx_idempotency_keys_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<IdempotencyKey(user_id={self.user_id}, key='{self.key}', "
            f"report_id={self.report_id}, expires_at='{self.expires_at}')>"
        )
