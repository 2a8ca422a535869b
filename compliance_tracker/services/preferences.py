"""Email preference updates driven by signed unsubscribe links."""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import upsert_statement
from ..core.security import UnsubscribeClaim, UnsubscribeKind
from ..models import EmailPreference, utc_now


logger = logging.getLogger(__name__)


PREFERENCE_FLAGS = {
    UnsubscribeKind.ALL: "unsubscribe_all",
    UnsubscribeKind.STATUS_CHANGES: "unsubscribe_status_changes",
    UnsubscribeKind.REMINDERS: "unsubscribe_reminders",
    UnsubscribeKind.TEAM_UPDATES: "unsubscribe_team_updates",
}

UNSUBSCRIBE_LABELS = {
    UnsubscribeKind.ALL: "all",
    UnsubscribeKind.STATUS_CHANGES: "status change notification",
    UnsubscribeKind.REMINDERS: "compliance reminder",
    UnsubscribeKind.TEAM_UPDATES: "team update",
}


async def apply_unsubscribe(session: AsyncSession, claim: UnsubscribeClaim) -> None:
    """
    Record an opt-out for the claim's user and kind.

    Creates the preference row if the user has none. Other flags on an
    existing row are left untouched, so repeating the request is harmless.

    Raises:
        ValueError: If the claim's user id is not a UUID
    """
    values = {
        "user_id": UUID(claim.user_id),
        PREFERENCE_FLAGS[claim.kind]: True,
        "updated_at": utc_now(),
    }
    await session.execute(
        upsert_statement(session, EmailPreference, values, ["user_id"])
    )
    logger.info(f"User {claim.user_id} unsubscribed from {claim.kind.value}")
