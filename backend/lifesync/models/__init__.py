# Models package init
"""
Importing this package registers every ORM model with `Base.metadata`
(Alembic autogenerate relies on it).
"""

from lifesync.models.category import Category
from lifesync.models.idempotency import IdempotencyKey
from lifesync.models.note import Note
from lifesync.models.profile import Preferences, Profile
from lifesync.models.report import GENERATED_BY_ON_DEMAND, GENERATED_BY_SCHEDULED, Report

__all__ = [
    "Category",
    "IdempotencyKey",
    "Note",
    "Preferences",
    "Profile",
    "Report",
    "GENERATED_BY_ON_DEMAND",
    "GENERATED_BY_SCHEDULED",
]
