"""
LifeSync Backend: IdempotencyStore Tests (SQLite in memory)
=============================================================

What:  Runs the store against a real aiosqlite database so the unique
       constraint and expiry filters are exercised as SQL, not mocks.

What we test:
    ✅ record then find returns the report id
    ✅ Rows are invisible after 24 hours and replaced by a new record
    ✅ A second record for a live key → already_recorded, first mapping kept
    ✅ forget drops a live mapping so the key can be re-pointed
    ✅ purge_expired removes only expired rows
    ✅ Fail-open: an unreachable database never raises
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from lifesync.config import Settings
from lifesync.services.idempotency_store import IDEMPOTENCY_TTL, IdempotencyStore, SideEffectStatus


class MutableClock:
    def __init__(self):
        self.now = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def store(sqlite_session_factory, clock):
    return IdempotencyStore(sqlite_session_factory, clock=clock)


class TestFindAndRecord:
    def setup_method(self):
        self.user_id = uuid.uuid4()
        self.report_id = uuid.uuid4()

    @pytest.mark.asyncio
    async def test_unknown_key_is_absent(self, store):
        assert await store.find(self.user_id, "nope") is None

    @pytest.mark.asyncio
    async def test_record_then_find(self, store):
        outcome = await store.record(self.user_id, "key-1", self.report_id)

        assert outcome.status is SideEffectStatus.RECORDED
        assert outcome.ok
        assert await store.find(self.user_id, "key-1") == self.report_id

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_user(self, store):
        await store.record(self.user_id, "shared", self.report_id)

        assert await store.find(uuid.uuid4(), "shared") is None

    @pytest.mark.asyncio
    async def test_duplicate_live_key_keeps_first_mapping(self, store):
        await store.record(self.user_id, "key-1", self.report_id)

        outcome = await store.record(self.user_id, "key-1", uuid.uuid4())

        assert outcome.status is SideEffectStatus.ALREADY_RECORDED
        assert outcome.ok
        assert await store.find(self.user_id, "key-1") == self.report_id

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, store, clock):
        await store.record(self.user_id, "key-1", self.report_id)

        clock.now += timedelta(hours=23, minutes=59)
        assert await store.find(self.user_id, "key-1") == self.report_id

        clock.now += timedelta(minutes=1)
        assert await store.find(self.user_id, "key-1") is None

    @pytest.mark.asyncio
    async def test_ttl_is_fixed_at_24_hours(self, store):
        assert store.ttl == IDEMPOTENCY_TTL == timedelta(hours=24)
        assert "idempotency_ttl_hours" not in Settings.model_fields

    @pytest.mark.asyncio
    async def test_expired_row_is_replaced(self, store, clock):
        await store.record(self.user_id, "key-1", self.report_id)
        clock.now += timedelta(hours=25)
        new_report = uuid.uuid4()

        outcome = await store.record(self.user_id, "key-1", new_report)

        assert outcome.status is SideEffectStatus.RECORDED
        assert await store.find(self.user_id, "key-1") == new_report

    @pytest.mark.asyncio
    async def test_forget_lets_key_be_repointed(self, store):
        await store.record(self.user_id, "key-1", self.report_id)
        replacement = uuid.uuid4()

        forgotten = await store.forget(self.user_id, "key-1")
        outcome = await store.record(self.user_id, "key-1", replacement)

        assert forgotten.status is SideEffectStatus.RECORDED
        assert outcome.status is SideEffectStatus.RECORDED
        assert await store.find(self.user_id, "key-1") == replacement

    @pytest.mark.asyncio
    async def test_forget_unknown_key_is_skipped(self, store):
        outcome = await store.forget(self.user_id, "never-recorded")

        assert outcome.status is SideEffectStatus.SKIPPED
        assert outcome.ok


class TestPurge:
    @pytest.mark.asyncio
    async def test_purges_only_expired_rows(self, store, clock):
        user_id = uuid.uuid4()
        await store.record(user_id, "old", uuid.uuid4())
        clock.now += timedelta(hours=12)
        await store.record(user_id, "fresh", uuid.uuid4())
        clock.now += timedelta(hours=13)

        purged = await store.purge_expired()

        assert purged == 1
        assert await store.find(user_id, "fresh") is not None


class TestFailOpen:
    def setup_method(self):
        def broken_factory():
            raise OperationalError("SELECT 1", {}, Exception("database is down"))

        self.broken_store = IdempotencyStore(MagicMock(side_effect=broken_factory))

    @pytest.mark.asyncio
    async def test_find_reports_absent(self):
        assert await self.broken_store.find(uuid.uuid4(), "key") is None

    @pytest.mark.asyncio
    async def test_record_returns_failed_outcome(self):
        outcome = await self.broken_store.record(uuid.uuid4(), "key", uuid.uuid4())

        assert outcome.status is SideEffectStatus.FAILED
        assert not outcome.ok
        assert outcome.error

    @pytest.mark.asyncio
    async def test_connection_refused_is_also_tolerated(self):
        store = IdempotencyStore(MagicMock(side_effect=ConnectionRefusedError("refused")))

        assert await store.find(uuid.uuid4(), "key") is None
        assert (await store.record(uuid.uuid4(), "key", uuid.uuid4())).status is SideEffectStatus.FAILED

    @pytest.mark.asyncio
    async def test_forget_returns_failed_outcome(self):
        outcome = await self.broken_store.forget(uuid.uuid4(), "key")

        assert outcome.status is SideEffectStatus.FAILED
