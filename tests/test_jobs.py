"""Tests for the scheduled job runners."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from compliance_tracker.jobs.digest_cron import run_flush_job
from compliance_tracker.models import Base, EmailQueueItem

from conftest import FakeEmailSender, Seed


@pytest.fixture
async def database_url(tmp_path):
    """A file-backed SQLite database with one queued status change."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_sessionmaker(engine, expire_on_commit=False)() as session:
        seed = Seed(session)
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.queue_item(alice, company, "GSTR-1")
        await session.commit()

    await engine.dispose()
    return url


async def _pending(url: str) -> int:
    engine = create_async_engine(url)
    async with async_sessionmaker(engine)() as session:
        rows = (
            await session.execute(select(EmailQueueItem).where(EmailQueueItem.processed_at.is_(None)))
        ).scalars().all()
    await engine.dispose()
    return len(rows)


class TestFlushJob:
    async def test_flush_job_reports_timings(self, database_url, settings):
        sender = FakeEmailSender()

        results = await run_flush_job(database_url, sender=sender, settings=settings)

        assert results["sent"] == 1
        assert results["completed_at"] is not None
        assert results["duration_seconds"] >= 0
        assert [e["to"] for e in sender.sent] == ["alice@example.com"]
        assert await _pending(database_url) == 0

    async def test_failed_sends_stay_queued(self, database_url, settings):
        results = await run_flush_job(
            database_url, sender=FakeEmailSender(fail_all=True), settings=settings
        )

        assert results["failed"] == 1
        assert await _pending(database_url) == 1

    async def test_crash_is_reraised(self, tmp_path, settings):
        # No tables: the flush fails on its first query
        url = f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"
        with pytest.raises(OperationalError):
            await run_flush_job(url, sender=FakeEmailSender(), settings=settings)
