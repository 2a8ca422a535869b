"""
Digest Composer: turns queued notification events into digest emails.

This module is responsible for:
1. Reading pending queue rows in arrival order
2. Grouping them by (recipient, email kind)
3. Honouring opt-outs with one bulk preference lookup
4. Claiming each group atomically, sending one email, then marking it processed

A row is only marked processed after a confirmed send or a confirmed
opt-out. A failed send releases the claim so the next flush retries it.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.security import UnsubscribeKind
from ..models import EmailQueueItem, EmailType
from .email_sender import EmailSender
from .email_templates import StatusChangeItem, render_status_digest
from .recipients import load_preferences


logger = logging.getLogger(__name__)


UNSUBSCRIBE_KIND_BY_EMAIL_TYPE = {
    EmailType.STATUS_CHANGE: UnsubscribeKind.STATUS_CHANGES,
    EmailType.REMINDER: UnsubscribeKind.REMINDERS,
}


@dataclass
class FlushResult:
    """
    Outcome of one flush run.

    ``sent`` and ``failed`` count email groups, ``skipped`` and ``processed``
    count queue rows.
    """

    queued: int = 0
    batches: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    processed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _QueuedRow:
    id: UUID
    user_id: UUID
    user_email: str
    company_name: str | None
    email_type: EmailType
    payload: dict


class DigestComposer:
    """Consumes the email queue and sends one digest per recipient and kind."""

    def __init__(
        self,
        session: AsyncSession,
        sender: EmailSender,
        settings: Settings | None = None,
    ):
        self._session = session
        self._sender = sender
        self._settings = settings or get_settings()

    async def flush(self, batch_size: int | None = None) -> FlushResult:
        """Process up to ``batch_size`` pending queue rows."""
        batch_size = batch_size or self._settings.digest_batch_size
        result = FlushResult()

        rows = await self._fetch_pending(batch_size)
        result.queued = len(rows)
        if not rows:
            logger.info("Email queue is empty")
            return result

        groups: dict[tuple[UUID, EmailType], list[_QueuedRow]] = {}
        for row in rows:
            groups.setdefault((row.user_id, row.email_type), []).append(row)
        result.batches = len(groups)

        preferences = await load_preferences(self._session, {row.user_id for row in rows})

        for (user_id, email_type), items in groups.items():
            claim_token = uuid4()
            claimed_ids = await self._claim([item.id for item in items], claim_token)
            if not claimed_ids:
                logger.info(f"Group {user_id}:{email_type.value} already claimed by another run")
                continue
            items = [item for item in items if item.id in claimed_ids]

            preference = preferences.get(user_id)
            if preference is not None and preference.suppresses(email_type):
                marked = await self._mark_processed(claim_token)
                result.skipped += marked
                result.processed += marked
                logger.info(
                    f"User {user_id} opted out of {email_type.value} emails, "
                    f"skipped {marked} queued items"
                )
                continue

            try:
                success, error = await self._send_group(user_id, email_type, items)
            except Exception as e:
                success, error = False, str(e)

            if success:
                result.processed += await self._mark_processed(claim_token)
                result.sent += 1
            else:
                await self._release(claim_token)
                result.failed += 1
                result.errors.append(f"User {user_id} ({email_type.value}): {error}")
                logger.error(
                    f"Digest to {items[0].user_email} failed, {len(items)} items left pending: {error}"
                )

        logger.info(
            f"Flush complete: {result.queued} queued, {result.batches} batches, "
            f"{result.sent} sent, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    # =========================================================================
    # QUEUE ACCESS
    # =========================================================================

    def _lease_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self._settings.queue_claim_lease_seconds)

    def _claimable(self, now: datetime):
        return and_(
            EmailQueueItem.processed_at.is_(None),
            or_(
                EmailQueueItem.claim_token.is_(None),
                EmailQueueItem.claimed_at < self._lease_cutoff(now),
            ),
        )

    async def _fetch_pending(self, batch_size: int) -> list[_QueuedRow]:
        now = datetime.now(timezone.utc)
        query = (
            select(
                EmailQueueItem.id,
                EmailQueueItem.user_id,
                EmailQueueItem.user_email,
                EmailQueueItem.company_name,
                EmailQueueItem.email_type,
                EmailQueueItem.payload,
            )
            .where(self._claimable(now))
            .order_by(EmailQueueItem.created_at.asc())
            .limit(batch_size)
        )
        result = await self._session.execute(query)
        return [_QueuedRow(*row) for row in result.all()]

    async def _claim(self, ids: list[UUID], claim_token: UUID) -> set[UUID]:
        """
        Take a lease on the given rows with one conditional UPDATE.

        Only rows that are still unprocessed and unclaimed (or whose lease
        expired) are taken. The claim is committed before anything is sent.
        """
        now = datetime.now(timezone.utc)
        stmt = (
            update(EmailQueueItem)
            .where(EmailQueueItem.id.in_(ids), self._claimable(now))
            .values(claim_token=claim_token, claimed_at=now)
            .returning(EmailQueueItem.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        claimed = set(result.scalars().all())
        await self._session.commit()
        return claimed

    async def _mark_processed(self, claim_token: UUID) -> int:
        stmt = (
            update(EmailQueueItem)
            .where(
                EmailQueueItem.claim_token == claim_token,
                EmailQueueItem.processed_at.is_(None),
            )
            .values(processed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount

    async def _release(self, claim_token: UUID) -> None:
        stmt = (
            update(EmailQueueItem)
            .where(
                EmailQueueItem.claim_token == claim_token,
                EmailQueueItem.processed_at.is_(None),
            )
            .values(claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
        await self._session.commit()

    # =========================================================================
    # RENDER & SEND
    # =========================================================================

    async def _send_group(
        self,
        user_id: UUID,
        email_type: EmailType,
        items: list[_QueuedRow],
    ) -> tuple[bool, str | None]:
        changes = [
            StatusChangeItem(
                requirement_id=str(item.payload.get("requirement_id", "")),
                requirement_name=item.payload.get("requirement_name") or "Compliance item",
                company_name=item.company_name or "",
                old_status=item.payload.get("old_status") or "",
                new_status=item.payload.get("new_status") or "",
                due_date=item.payload.get("due_date"),
            )
            for item in items
        ]

        email = render_status_digest(
            recipient_user_id=str(user_id),
            items=changes,
            recipient_name=items[0].payload.get("recipient_name"),
            section_limit=self._settings.digest_section_limit,
            site_url=self._settings.site_url,
            unsubscribe_secret=self._settings.unsubscribe_signing_key,
            unsubscribe_kind=UNSUBSCRIBE_KIND_BY_EMAIL_TYPE[email_type],
        )
        return await self._sender.send(items[0].user_email, email.subject, email.html)
