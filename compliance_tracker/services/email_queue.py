"""
Email event queue: durable record of notification events awaiting the digest.

Request handlers call into this module inside their own transaction. It never
sends mail; the periodic flush (see digest_composer) does that. A failed
enqueue is logged and swallowed so the caller's status change still commits.
"""

import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import EmailQueueItem, EmailType
from .recipients import load_company_recipients, load_users


logger = logging.getLogger(__name__)


@dataclass
class StatusChange:
    """A requirement moving from one status to another."""

    company_id: UUID
    company_name: str
    requirement_id: UUID
    requirement_name: str
    old_status: str
    new_status: str
    due_date: date | None = None


@dataclass
class Recipient:
    user_id: UUID
    email: str
    name: str | None = None


def build_status_change_payload(change: StatusChange, recipient: Recipient) -> dict:
    return {
        "requirement_id": str(change.requirement_id),
        "requirement_name": change.requirement_name,
        "due_date": change.due_date.isoformat() if change.due_date else None,
        "old_status": change.old_status,
        "new_status": change.new_status,
        "recipient_name": recipient.name,
    }


async def enqueue_status_change(
    session: AsyncSession,
    recipient: Recipient,
    change: StatusChange,
) -> EmailQueueItem | None:
    """
    Append one status-change event for a recipient.

    The row is written inside a SAVEPOINT so a failure here rolls back only
    the queue insert. Returns the new row, or None if the write failed.
    """
    item = EmailQueueItem(
        user_id=recipient.user_id,
        user_email=recipient.email,
        company_id=change.company_id,
        company_name=change.company_name,
        email_type=EmailType.STATUS_CHANGE,
        payload=build_status_change_payload(change, recipient),
    )

    try:
        async with session.begin_nested():
            session.add(item)
            await session.flush()
    except SQLAlchemyError as e:
        logger.error(
            f"Failed to enqueue status change for requirement {change.requirement_id} "
            f"(user {recipient.user_id}): {e}"
        )
        return None

    return item


async def enqueue_status_change_for_recipients(
    session: AsyncSession,
    change: StatusChange,
    recipients: list[Recipient],
) -> list[EmailQueueItem]:
    """Queue one row per recipient. Rows that fail to write are left out."""
    queued = []
    for recipient in recipients:
        item = await enqueue_status_change(session, recipient, change)
        if item is not None:
            queued.append(item)

    logger.info(
        f"Queued {len(queued)} status change emails for requirement {change.requirement_id}"
    )
    return queued


async def enqueue_status_change_for_company(
    session: AsyncSession,
    change: StatusChange,
    actor_user_id: UUID | None = None,
) -> list[EmailQueueItem]:
    """
    Fan a status change out to every recipient of the company.

    The user who made the change is not notified about it. Recipients
    without an email address are skipped.
    """
    recipients_by_company = await load_company_recipients(session, [change.company_id])
    user_ids = recipients_by_company.get(change.company_id, set())
    user_ids.discard(actor_user_id)

    users = await load_users(session, user_ids)

    recipients = []
    for user_id in sorted(user_ids, key=str):
        user = users.get(user_id)
        if not user or not user.email:
            logger.debug(f"No email address for user {user_id}, not queueing")
            continue
        recipients.append(Recipient(user_id=user.id, email=user.email, name=user.full_name))

    return await enqueue_status_change_for_recipients(session, change, recipients)
