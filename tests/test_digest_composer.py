"""
Tests for the Digest Composer - queue flush semantics.

These tests verify:
1. GROUPING: One email per (recipient, kind), rows processed together
2. FAILURE: A failed send leaves its rows pending for the next flush
3. OPT-OUT: Unsubscribed users get nothing and their rows are consumed
4. CLAIMS: Rows leased by another run are not sent twice
"""

import re
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_tracker.core.security import UnsubscribeKind, verify_unsubscribe_token
from compliance_tracker.models import EmailQueueItem, EmailType
from compliance_tracker.services.digest_composer import DigestComposer

from conftest import TEST_UNSUBSCRIBE_SECRET, FakeEmailSender, Seed


TOKEN_RE = re.compile(r"token=([A-Za-z0-9_-]+)")


async def _queue_state(session: AsyncSession) -> dict:
    result = await session.execute(
        select(EmailQueueItem.id, EmailQueueItem.processed_at, EmailQueueItem.claim_token)
    )
    return {row.id: (row.processed_at, row.claim_token) for row in result.all()}


# =============================================================================
# TEST: GROUPING
# =============================================================================


class TestFlushGrouping:
    """One digest per recipient and kind."""

    async def test_three_items_two_users_sends_two_emails(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """Two rows for A and one for B produce exactly two emails."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com", "Alice")
        bob = await seed.admin(company, "bob@example.com", "Bob")
        await seed.queue_item(alice, company, "GSTR-1", new_status="completed")
        await seed.queue_item(alice, company, "GSTR-3B", new_status="overdue")
        await seed.queue_item(bob, company, "TDS Return", new_status="pending")

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.queued == 3
        assert result.batches == 2
        assert result.sent == 2
        assert result.failed == 0
        assert result.processed == 3
        assert sorted(e["to"] for e in sender.sent) == ["alice@example.com", "bob@example.com"]

        state = await _queue_state(session)
        assert all(processed_at is not None for processed_at, _ in state.values())

    async def test_digest_lists_every_item_and_signed_unsubscribe_link(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """The digest names each change and links a valid status-change unsubscribe token."""
        company = await seed.company("Beta LLP")
        alice = await seed.admin(company, "alice@example.com", "Alice")
        await seed.queue_item(alice, company, "GSTR-1", new_status="completed")
        await seed.queue_item(alice, company, "Form AOC-4", new_status="overdue")

        sender = FakeEmailSender()
        await DigestComposer(session, sender, settings).flush()

        email = sender.sent[0]
        assert email["subject"] == "2 compliance items updated"
        assert "GSTR-1" in email["html"]
        assert "Form AOC-4" in email["html"]
        assert "Beta LLP" in email["html"]

        claim = verify_unsubscribe_token(TOKEN_RE.search(email["html"]).group(1), TEST_UNSUBSCRIBE_SECRET)
        assert claim is not None
        assert claim.user_id == str(alice.id)
        assert claim.kind == UnsubscribeKind.STATUS_CHANGES

    async def test_kinds_are_sent_separately(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """A status change and a reminder row for the same user are two emails."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.queue_item(alice, company, "GSTR-1")
        await seed.queue_item(alice, company, "GSTR-3B", email_type=EmailType.REMINDER)

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.sent == 2
        assert len(sender.sent) == 2

    async def test_batch_size_takes_oldest_first(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """Only batch_size rows are read, oldest first."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        bob = await seed.admin(company, "bob@example.com")
        now = datetime.now(timezone.utc)
        oldest = await seed.queue_item(bob, company, "Oldest", created_at=now - timedelta(minutes=30))
        await seed.queue_item(alice, company, "Middle", created_at=now - timedelta(minutes=20))
        newest = await seed.queue_item(alice, company, "Newest", created_at=now - timedelta(minutes=10))

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush(batch_size=2)

        assert result.queued == 2
        state = await _queue_state(session)
        assert state[oldest.id][0] is not None
        assert state[newest.id][0] is None

    async def test_empty_queue_sends_nothing(self, session: AsyncSession, settings):
        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.queued == 0
        assert result.sent == 0
        assert sender.attempts == []


# =============================================================================
# TEST: FAILURE HANDLING
# =============================================================================


class TestFlushFailures:
    """Failed sends never mark rows processed."""

    async def test_failed_send_leaves_rows_pending_and_unclaimed(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """Alice's send fails: her rows stay pending, Bob's are processed."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        bob = await seed.admin(company, "bob@example.com")
        a1 = await seed.queue_item(alice, company, "GSTR-1")
        a2 = await seed.queue_item(alice, company, "GSTR-3B")
        b1 = await seed.queue_item(bob, company, "TDS Return")

        sender = FakeEmailSender(fail_for={"alice@example.com"})
        result = await DigestComposer(session, sender, settings).flush()

        assert result.sent == 1
        assert result.failed == 1
        assert result.processed == 1
        assert len(result.errors) == 1

        state = await _queue_state(session)
        assert state[a1.id] == (None, None)
        assert state[a2.id] == (None, None)
        assert state[b1.id][0] is not None

    async def test_failed_rows_are_retried_on_next_flush(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.queue_item(alice, company, "GSTR-1")

        failing = FakeEmailSender(fail_all=True)
        first = await DigestComposer(session, failing, settings).flush()
        assert first.failed == 1

        working = FakeEmailSender()
        second = await DigestComposer(session, working, settings).flush()

        assert second.sent == 1
        assert second.processed == 1
        assert [e["to"] for e in working.sent] == ["alice@example.com"]

    async def test_second_flush_after_success_sends_nothing(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """Processed rows are never sent again."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.queue_item(alice, company, "GSTR-1")

        sender = FakeEmailSender()
        await DigestComposer(session, sender, settings).flush()
        second = await DigestComposer(session, sender, settings).flush()

        assert second.queued == 0
        assert len(sender.sent) == 1


# =============================================================================
# TEST: OPT-OUT
# =============================================================================


class TestFlushPreferences:
    """Preferences are honoured without losing queue state."""

    async def test_unsubscribe_all_sends_nothing_and_consumes_rows(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.preference(alice, unsubscribe_all=True)
        await seed.queue_item(alice, company, "GSTR-1")
        await seed.queue_item(alice, company, "GSTR-3B")

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert sender.attempts == []
        assert result.sent == 0
        assert result.skipped == 2
        assert result.processed == 2

        state = await _queue_state(session)
        assert all(processed_at is not None for processed_at, _ in state.values())

    async def test_status_opt_out_does_not_suppress_reminders(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        await seed.preference(alice, unsubscribe_status_changes=True)
        await seed.queue_item(alice, company, "GSTR-1")
        await seed.queue_item(alice, company, "GSTR-3B", email_type=EmailType.REMINDER)

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.sent == 1
        assert result.skipped == 1
        claim = verify_unsubscribe_token(
            TOKEN_RE.search(sender.sent[0]["html"]).group(1), TEST_UNSUBSCRIBE_SECRET
        )
        assert claim.kind == UnsubscribeKind.REMINDERS


# =============================================================================
# TEST: CLAIMS
# =============================================================================


class TestFlushClaims:
    """Concurrent flushes never send the same row twice."""

    async def test_rows_leased_by_another_run_are_skipped(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        item = await seed.queue_item(alice, company, "GSTR-1")
        await session.execute(
            update(EmailQueueItem)
            .where(EmailQueueItem.id == item.id)
            .values(claim_token=uuid4(), claimed_at=datetime.now(timezone.utc))
        )
        await session.commit()

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.queued == 0
        assert sender.attempts == []

    async def test_expired_lease_is_taken_over(
        self,
        session: AsyncSession,
        seed: Seed,
        settings,
    ):
        """A run that crashed after claiming does not strand its rows."""
        company = await seed.company()
        alice = await seed.admin(company, "alice@example.com")
        item = await seed.queue_item(alice, company, "GSTR-1")
        stale = datetime.now(timezone.utc) - timedelta(seconds=settings.queue_claim_lease_seconds + 60)
        await session.execute(
            update(EmailQueueItem)
            .where(EmailQueueItem.id == item.id)
            .values(claim_token=uuid4(), claimed_at=stale)
        )
        await session.commit()

        sender = FakeEmailSender()
        result = await DigestComposer(session, sender, settings).flush()

        assert result.sent == 1
        assert result.processed == 1
