"""
LifeSync Backend: Weekly On-Demand Quota
==========================================

What:  Enforces "at most N (default 3) on-demand reports per user per local
       week".
How:   The week is Monday 00:00:00 to Sunday 23:59:59.999999 in the user's
       IANA timezone, converted to UTC for counting. Prior on-demand reports
       in that window are counted through ReportStore, soft-deleted rows
       included (deleting a report does not refund quota).
Who:   ReportOrchestrator, after categories are validated and before any
       LLM call.

Concurrency: count-then-compare is not isolated against concurrent
requests from the same user; an overshoot of one report is accepted.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lifesync.exceptions import InvalidRequestError, WeeklyLimitExceededError
from lifesync.models.report import GENERATED_BY_ON_DEMAND
from lifesync.services.report_store import ReportStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    count: int
    limit: int
    week_start: datetime
    week_end: datetime

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)


def _load_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidRequestError(
            message=f"Unknown timezone '{tz_name}'",
            errors=[f"timezone '{tz_name}' is not a valid IANA zone"],
        ) from e


def current_week_bounds(tz_name: str, now: datetime) -> Tuple[datetime, datetime]:
    """
    Monday 00:00:00 through Sunday 23:59:59.999999 of the local week that
    contains `now`, returned as UTC instants.

    Each bound gets the zone's offset on its own date, so a week spanning a
    DST change is 167 or 169 hours long.
    """
    zone = _load_zone(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_date = now.astimezone(zone).date()
    monday = local_date - timedelta(days=local_date.weekday())
    sunday = monday + timedelta(days=6)

    start_local = datetime.combine(monday, time.min, tzinfo=zone)
    end_local = datetime.combine(sunday, time.max, tzinfo=zone)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


class QuotaGuard:
    def __init__(
        self,
        report_store: ReportStore,
        limit: int = 3,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.report_store = report_store
        self.limit = limit
        self._clock = clock

    async def check_and_count(
        self,
        user_id: uuid.UUID,
        tz_name: str,
        now: Optional[datetime] = None,
    ) -> QuotaStatus:
        """
        Count this week's on-demand reports and enforce the limit.

        Raises:
            WeeklyLimitExceededError: count >= limit.
            InvalidRequestError: Unknown timezone.
        """
        week_start, week_end = current_week_bounds(tz_name, now or self._clock())
        count = await self.report_store.count_reports(
            user_id,
            GENERATED_BY_ON_DEMAND,
            week_start,
            week_end,
        )
        if count >= self.limit:
            logger.info(
                "Weekly on-demand limit reached (%d/%d)",
                count,
                self.limit,
                extra={"user_id": str(user_id)},
            )
            raise WeeklyLimitExceededError(
                count=count,
                limit=self.limit,
                week_start=week_start,
                week_end=week_end,
            )
        return QuotaStatus(count=count, limit=self.limit, week_start=week_start, week_end=week_end)
