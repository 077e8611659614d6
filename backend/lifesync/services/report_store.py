"""
LifeSync Backend: Report Persistence
======================================

What:  Writes, reads and counts rows of the `reports` table.
How:   Works on the request-scoped AsyncSession. create_report commits so
       the report is durable before the idempotency mapping that points at
       it is written by a separate session.
Who:   ReportOrchestrator (create/get), QuotaGuard (count), the reports route.

Error Handling:
    Database failures while creating become PersistenceFailedError; the
    transaction is rolled back so no partial report is ever visible.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.exceptions import PersistenceFailedError
from lifesync.models.report import Report

logger = logging.getLogger(__name__)


class ReportStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_report(
        self,
        user_id: uuid.UUID,
        generated_by: str,
        categories_snapshot: List[Dict[str, Any]],
        html: str,
        text_version: Optional[str],
        llm_model: Optional[str],
        system_prompt_version: Optional[str],
    ) -> Report:
        report = Report(
            user_id=user_id,
            generated_by=generated_by,
            categories_snapshot=categories_snapshot,
            html=html,
            text_version=text_version,
            llm_model=llm_model,
            system_prompt_version=system_prompt_version,
        )
        try:
            self.db.add(report)
            await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to persist report: %s",
                str(e),
                extra={"user_id": str(user_id)},
            )
            raise PersistenceFailedError(context={"error_type": type(e).__name__}) from e

        logger.info("Report %s persisted (%s)", report.id, generated_by)
        return report

    async def close_read_transaction(self) -> None:
        """
        End the session's current (read-only) transaction.

        The session gives its connection back to the pool and autobegins a
        new transaction on the next query.
        """
        await self.db.commit()

    async def get_report(self, user_id: uuid.UUID, report_id: uuid.UUID) -> Optional[Report]:
        """The caller's report, or None when missing or soft-deleted."""
        stmt = select(Report).where(
            and_(
                Report.id == report_id,
                Report.user_id == user_id,
                Report.deleted_at.is_(None),
            )
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def count_reports(
        self,
        user_id: uuid.UUID,
        generated_by: str,
        start: datetime,
        end: datetime,
    ) -> int:
        """Reports created in [start, end], soft-deleted rows included."""
        stmt = select(func.count(Report.id)).where(
            and_(
                Report.user_id == user_id,
                Report.generated_by == generated_by,
                Report.created_at >= start,
                Report.created_at <= end,
            )
        )
        return (await self.db.execute(stmt)).scalar_one()
