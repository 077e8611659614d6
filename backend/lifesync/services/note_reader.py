"""
LifeSync Backend: Notes Reader
================================

Bounded, newest-first read of a user's notes restricted to a set of
categories. Feeds the report prompt; soft-deleted notes are excluded.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.models.note import Note


@dataclass
class NoteExcerpt:
    category_id: uuid.UUID
    title: Optional[str]
    content: str
    created_at: datetime


class NoteReader:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def fetch_recent_notes(
        self,
        user_id: uuid.UUID,
        category_ids: Sequence[uuid.UUID],
        limit: int = 100,
    ) -> List[NoteExcerpt]:
        if not category_ids:
            return []
        stmt = (
            select(Note.category_id, Note.title, Note.content, Note.created_at)
            .where(
                and_(
                    Note.user_id == user_id,
                    Note.category_id.in_(list(category_ids)),
                    Note.deleted_at.is_(None),
                )
            )
            .order_by(Note.created_at.desc())
            .limit(limit)
        )
        rows = await self.db.execute(stmt)
        return [
            NoteExcerpt(
                category_id=row.category_id,
                title=row.title,
                content=row.content,
                created_at=row.created_at,
            )
            for row in rows
        ]
