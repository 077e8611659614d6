"""
LifeSync Backend: Authorization Context Provider
==================================================

Given a caller, returns what a report request may touch: the user's
timezone and the categories they are authorized to report on. A category
is authorized when it is listed in `preferences.active_categories` AND
still exists with `active = true`.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.exceptions import NotFoundError
from lifesync.models.category import Category
from lifesync.models.profile import Preferences, Profile

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationContext:
    timezone: str
    # authorized category id → display name
    categories: Dict[uuid.UUID, str] = field(default_factory=dict)


class UserContextService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_authorization_context(self, user_id: uuid.UUID) -> AuthorizationContext:
        profile = await self.db.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(resource="Profile", resource_id=str(user_id))

        preferences = await self.db.get(Preferences, user_id)
        selected = list(preferences.active_categories or []) if preferences else []
        if not selected:
            return AuthorizationContext(timezone=profile.timezone)

        rows = await self.db.execute(
            select(Category.id, Category.name).where(
                and_(Category.id.in_(selected), Category.active.is_(True))
            )
        )
        categories = {row.id: row.name for row in rows}
        logger.debug(
            "Authorization context: %d of %d preferred categories active",
            len(categories),
            len(selected),
        )
        return AuthorizationContext(timezone=profile.timezone, categories=categories)
