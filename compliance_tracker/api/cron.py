"""
Scheduler endpoints: queue flush and daily reminders.

Both are invoked by an external scheduler with the ``x-cron-secret`` header
and are safe to call repeatedly or concurrently.
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..core import CronAuthDep, SessionDep, SettingsDep
from ..services.digest_composer import DigestComposer
from ..services.email_sender import EmailSender, ResendEmailSender
from ..services.reminder_scanner import ReminderScanner


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def get_email_sender(settings: SettingsDep) -> EmailSender:
    """Email transport used by the scheduled jobs."""
    return ResendEmailSender.from_settings(settings)


EmailSenderDep = Annotated[EmailSender, Depends(get_email_sender)]


async def _database_failure(session, job: str, error: SQLAlchemyError) -> JSONResponse:
    await session.rollback()
    logger.error(f"{job} aborted by database error: {error}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": str(error)[:200]},
    )


@router.post("/flush-email-queue")
async def flush_email_queue(
    _auth: CronAuthDep,
    session: SessionDep,
    settings: SettingsDep,
    sender: EmailSenderDep,
    batch_size: Annotated[int | None, Query(ge=1, le=5000)] = None,
):
    """Send one digest per recipient and kind for the pending queue."""
    composer = DigestComposer(session, sender, settings)
    try:
        result = await composer.flush(batch_size)
    except SQLAlchemyError as e:
        return await _database_failure(session, "Queue flush", e)

    return {"ok": True, **result.to_dict()}


@router.post("/send-compliance-reminders")
async def send_compliance_reminders(
    _auth: CronAuthDep,
    session: SessionDep,
    settings: SettingsDep,
    sender: EmailSenderDep,
    run_date: Annotated[date | None, Query(description="Override the run date (UTC)")] = None,
):
    """Send today's reminder digest to every company admin."""
    scanner = ReminderScanner(session, sender, settings)
    try:
        result = await scanner.run(run_date)
    except SQLAlchemyError as e:
        return await _database_failure(session, "Reminder run", e)

    return {"ok": True, **result.to_dict()}
