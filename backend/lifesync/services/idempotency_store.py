"""
LifeSync Backend: Idempotency Store
=====================================

What:  (user_id, key) → report_id bookkeeping that makes "generate a report"
       safe to call more than once with the same Idempotency-Key.
How:   Rows in `idempotency_keys`, unique on (user_id, key), visible for
       24 hours. Expiry is evaluated at read time; purge_expired() is only
       housekeeping.
Who:   ReportOrchestrator (find before generating, record after persisting,
       forget when the mapped report is gone);
       the application lifespan runs purge_expired() periodically.

Failure Policy (fail open):
    This is non-critical bookkeeping. When the database is unreachable,
    find() reports "absent" and record() returns a `failed` outcome instead
    of raising. The accepted cost is a possible duplicate report.

Sessions:
    The store opens its own short-lived sessions from the injected
    session factory, so a failure here never rolls back the caller's
    report transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifesync.models.idempotency import IdempotencyKey

logger = logging.getLogger(__name__)


IDEMPOTENCY_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SideEffectStatus(str, Enum):
    RECORDED = "recorded"
    ALREADY_RECORDED = "already_recorded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SideEffectOutcome:
    """
    Typed result of a non-fatal side effect.

    The primary operation already succeeded when one of these is produced;
    callers log `failed` outcomes and carry on.
    """

    status: SideEffectStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not SideEffectStatus.FAILED


class IdempotencyStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self.ttl = IDEMPOTENCY_TTL
        self._clock = clock

    async def find(self, user_id: uuid.UUID, key: str) -> Optional[uuid.UUID]:
        """
        Report id recorded for (user_id, key), or None when never recorded,
        expired, or the store is unreachable.
        """
        now = self._clock()
        try:
            async with self._session_factory() as session:
                stmt = select(IdempotencyKey.report_id).where(
                    and_(
                        IdempotencyKey.user_id == user_id,
                        IdempotencyKey.key == key,
                        IdempotencyKey.expires_at > now,
                    )
                )
                return (await session.execute(stmt)).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Idempotency lookup failed, proceeding without it: %s",
                type(e).__name__,
                extra={"user_id": str(user_id)},
            )
            return None

    async def record(
        self,
        user_id: uuid.UUID,
        key: str,
        report_id: uuid.UUID,
    ) -> SideEffectOutcome:
        """
        Insert the mapping with a fresh TTL.

        An expired row for the same (user_id, key) is replaced in the same
        transaction. A live row, including one inserted concurrently by a
        racing request, wins: the result is `already_recorded`.
        """
        now = self._clock()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(IdempotencyKey).where(
                            and_(
                                IdempotencyKey.user_id == user_id,
                                IdempotencyKey.key == key,
                                IdempotencyKey.expires_at <= now,
                            )
                        )
                    )
                    session.add(
                        IdempotencyKey(
                            user_id=user_id,
                            key=key,
                            report_id=report_id,
                            expires_at=now + self.ttl,
                            created_at=now,
                        )
                    )
            logger.info(
                "Idempotency key recorded for report %s",
                report_id,
                extra={"user_id": str(user_id)},
            )
            return SideEffectOutcome(SideEffectStatus.RECORDED)
        except IntegrityError:
            logger.info("Idempotency key already recorded; keeping the existing mapping")
            return SideEffectOutcome(SideEffectStatus.ALREADY_RECORDED)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Failed to record idempotency key: %s",
                type(e).__name__,
                extra={"user_id": str(user_id)},
            )
            return SideEffectOutcome(SideEffectStatus.FAILED, error=str(e)[:200])

    async def forget(self, user_id: uuid.UUID, key: str) -> SideEffectOutcome:
        """
        Drop the mapping for (user_id, key), live or not.

        Used when the mapped report no longer exists, so the next record()
        can point the key at its replacement.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(IdempotencyKey).where(
                            and_(
                                IdempotencyKey.user_id == user_id,
                                IdempotencyKey.key == key,
                            )
                        )
                    )
            if not result.rowcount:
                return SideEffectOutcome(SideEffectStatus.SKIPPED)
            logger.info("Stale idempotency key dropped", extra={"user_id": str(user_id)})
            return SideEffectOutcome(SideEffectStatus.RECORDED)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Failed to drop stale idempotency key: %s",
                type(e).__name__,
                extra={"user_id": str(user_id)},
            )
            return SideEffectOutcome(SideEffectStatus.FAILED, error=str(e)[:200])

    async def purge_expired(self) -> int:
        """Delete expired rows. Returns the number of rows removed."""
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(IdempotencyKey).where(IdempotencyKey.expires_at <= now)
                )
        purged = result.rowcount or 0
        if purged:
            logger.info("Purged %d expired idempotency keys", purged)
        return purged
