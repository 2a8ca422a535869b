"""
Reminder Scanner: daily due-date digest for company administrators.

This module:
1. Scans open requirements and buckets them by due-date proximity
2. Resolves recipients by role (company admins plus platform superadmins)
3. Sends at most one digest per recipient per UTC day
4. Records in-app notifications for every reminded requirement

Idempotency comes from notification_email_log: a row is written only after a
successful send, and a user with a row for today is skipped.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    Company,
    CompanyNotification,
    CompanyNotificationType,
    EmailType,
    NotificationEmailLog,
    RegulatoryRequirement,
    RequirementStatus,
)
from .email_sender import EmailSender
from .email_templates import ReminderItem, ReminderSection, render_reminder_digest
from .recipients import load_company_recipients, load_preferences, load_users


logger = logging.getLogger(__name__)


REMINDER_LOG_KIND = "reminder_digest"

# Exact day offsets that trigger a due-soon reminder
DUE_SOON_THRESHOLDS = (14, 7, 3, 1)

OVERDUE = "overdue"

# Bucket key -> digest section title, in display order
SECTION_TITLES = {
    14: "Due in 14 days",
    7: "Due in 7 days",
    3: "Due in 3 days",
    1: "Due tomorrow",
    OVERDUE: "Overdue",
}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ReminderCandidate:
    """A requirement that qualifies for today's reminders."""

    requirement_id: UUID
    company_id: UUID
    company_name: str
    requirement_name: str
    due_date: date
    status: str
    bucket: int | str  # threshold in days, or OVERDUE
    days: int  # days until due, or days overdue


@dataclass
class ReminderRunResult:
    run_date: str
    users: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    notifications: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# CLASSIFICATION
# =============================================================================


def days_between_utc(start: date, end: date) -> int:
    """Whole calendar days from ``start`` to ``end`` (negative if end is earlier)."""
    return (end - start).days


def classify_due_date(days_until: int) -> tuple[int | str, int] | None:
    """
    Decide whether a requirement due in ``days_until`` days is reminded today.

    Due-soon reminders fire only on the exact threshold days. Overdue items
    are reminded daily for the first week, then once a week.

    Returns (bucket, days) or None.
    """
    if days_until in DUE_SOON_THRESHOLDS:
        return days_until, days_until

    if days_until < 0:
        days_overdue = -days_until
        if days_overdue <= 7 or days_overdue % 7 == 0:
            return OVERDUE, days_overdue

    return None


# =============================================================================
# REMINDER SCANNER
# =============================================================================


class ReminderScanner:
    """Builds and sends the daily reminder digest."""

    def __init__(
        self,
        session: AsyncSession,
        sender: EmailSender,
        settings: Settings | None = None,
    ):
        self._session = session
        self._sender = sender
        self._settings = settings or get_settings()

    async def find_candidates(self, today: date) -> list[ReminderCandidate]:
        """All open requirements that qualify for a reminder on ``today``."""
        query = (
            select(
                RegulatoryRequirement.id,
                RegulatoryRequirement.company_id,
                Company.name,
                RegulatoryRequirement.requirement,
                RegulatoryRequirement.due_date,
                RegulatoryRequirement.status,
            )
            .join(Company, Company.id == RegulatoryRequirement.company_id)
            .where(
                RegulatoryRequirement.status != RequirementStatus.COMPLETED,
                RegulatoryRequirement.due_date.is_not(None),
            )
            .order_by(RegulatoryRequirement.due_date.asc())
        )
        result = await self._session.execute(query)

        candidates = []
        for req_id, company_id, company_name, name, due_date, status in result.all():
            classification = classify_due_date(days_between_utc(today, due_date))
            if classification is None:
                continue
            bucket, days = classification
            candidates.append(ReminderCandidate(
                requirement_id=req_id,
                company_id=company_id,
                company_name=company_name,
                requirement_name=name,
                due_date=due_date,
                status=status.value if isinstance(status, RequirementStatus) else str(status),
                bucket=bucket,
                days=days,
            ))
        return candidates

    async def run(self, today: date | None = None) -> ReminderRunResult:
        """
        Send today's reminder digests.

        Per-user problems are logged and counted; only infrastructure failures
        (for example an unreachable database) propagate.
        """
        today = today or datetime.now(timezone.utc).date()
        result = ReminderRunResult(run_date=today.isoformat())

        candidates = await self.find_candidates(today)
        if not candidates:
            logger.info(f"No reminders due on {result.run_date}")
            return result

        recipients = await load_company_recipients(
            self._session, {c.company_id for c in candidates}
        )

        by_user: dict[UUID, list[ReminderCandidate]] = {}
        for candidate in candidates:
            for user_id in recipients.get(candidate.company_id, set()):
                by_user.setdefault(user_id, []).append(candidate)

        result.users = len(by_user)
        if not by_user:
            logger.info("Reminders are due but no company has an admin to notify")
            return result

        user_ids = set(by_user)
        users = await load_users(self._session, user_ids)
        preferences = await load_preferences(self._session, user_ids)
        already_sent = await self._already_sent(user_ids, today)

        for user_id in sorted(user_ids, key=str):
            user = users.get(user_id)
            if not user or not user.email:
                logger.debug(f"No email address for user {user_id}")
                result.skipped += 1
                continue

            preference = preferences.get(user_id)
            if preference is not None and preference.suppresses(EmailType.REMINDER):
                result.skipped += 1
                continue

            if user_id in already_sent:
                result.skipped += 1
                continue

            items = by_user[user_id]
            try:
                email = render_reminder_digest(
                    recipient_user_id=str(user_id),
                    as_of_date=result.run_date,
                    sections=self._build_sections(items),
                    recipient_name=user.full_name,
                    section_limit=self._settings.reminder_section_limit,
                    site_url=self._settings.site_url,
                    unsubscribe_secret=self._settings.unsubscribe_signing_key,
                )
                success, error = await self._sender.send(user.email, email.subject, email.html)
            except Exception as e:
                success, error = False, str(e)

            if not success:
                result.failed += 1
                result.errors.append(f"User {user_id}: {error}")
                logger.error(f"Failed to send reminder digest to {user.email}: {error}")
                continue

            result.sent += 1
            await self._record_sent(user_id, today)
            result.notifications += await self._create_notifications(user_id, items)

        logger.info(
            f"Reminder run {result.run_date}: {result.users} users, {result.sent} sent, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    def _build_sections(self, items: list[ReminderCandidate]) -> list[ReminderSection]:
        sections = []
        for bucket, title in SECTION_TITLES.items():
            section_items = [
                ReminderItem(
                    company_name=c.company_name,
                    requirement_name=c.requirement_name,
                    due_date=c.due_date.isoformat(),
                    status=c.status,
                )
                for c in items
                if c.bucket == bucket
            ]
            if section_items:
                sections.append(ReminderSection(title=title, items=section_items))
        return sections

    async def _already_sent(self, user_ids: set[UUID], today: date) -> set[UUID]:
        result = await self._session.execute(
            select(NotificationEmailLog.user_id).where(
                NotificationEmailLog.user_id.in_(user_ids),
                NotificationEmailLog.run_date == today,
                NotificationEmailLog.kind == REMINDER_LOG_KIND,
            )
        )
        return set(result.scalars().all())

    async def _record_sent(self, user_id: UUID, today: date) -> None:
        """Write the idempotency row. A concurrent run may have written it first."""
        try:
            async with self._session.begin_nested():
                self._session.add(NotificationEmailLog(
                    user_id=user_id,
                    run_date=today,
                    kind=REMINDER_LOG_KIND,
                ))
            await self._session.commit()
        except IntegrityError:
            logger.warning(f"Reminder log for user {user_id} on {today} already exists")
            await self._session.commit()

    async def _create_notifications(
        self,
        user_id: UUID,
        items: list[ReminderCandidate],
    ) -> int:
        """Insert in-app notifications. Best effort: failures are only logged."""
        notifications = [self._notification_for(user_id, c) for c in items]
        try:
            async with self._session.begin_nested():
                self._session.add_all(notifications)
            await self._session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to create in-app notifications for user {user_id}: {e}")
            return 0
        return len(notifications)

    def _notification_for(self, user_id: UUID, c: ReminderCandidate) -> CompanyNotification:
        due = c.due_date.isoformat()
        if c.bucket == OVERDUE:
            return CompanyNotification(
                company_id=c.company_id,
                user_id=user_id,
                type=CompanyNotificationType.OVERDUE,
                title="Compliance overdue",
                message=f'"{c.requirement_name}" is overdue (due {due}).',
                requirement_id=c.requirement_id,
                is_read=False,
                metadata_={"days_overdue": c.days},
            )

        if c.days == 1:
            title = "Compliance due tomorrow"
            message = f'"{c.requirement_name}" is due tomorrow ({due}).'
        else:
            title = "Compliance due soon"
            message = f'"{c.requirement_name}" is due in {c.days} days ({due}).'

        return CompanyNotification(
            company_id=c.company_id,
            user_id=user_id,
            type=CompanyNotificationType.UPCOMING_DEADLINE,
            title=title,
            message=message,
            requirement_id=c.requirement_id,
            is_read=False,
            metadata_={"days_until_due": c.days},
        )
