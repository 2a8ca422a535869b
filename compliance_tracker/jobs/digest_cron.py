"""
Digest Cron Jobs: queue flush and daily compliance reminders.

These run as scheduled jobs outside the web process, for example:

    */10 * * * *  compliance-tracker-jobs flush
    30 3 * * *    compliance-tracker-jobs reminders

The HTTP endpoints under /api/cron run the same services. Both jobs are safe
to re-run: unsent queue rows stay pending and reminders are logged per day.
"""

import argparse
import asyncio
import logging
import os
import sys
import traceback
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import create_engine_for_url
from ..services.digest_composer import DigestComposer
from ..services.email_sender import EmailSender, ResendEmailSender
from ..services.reminder_scanner import ReminderScanner


logger = logging.getLogger(__name__)

ALERT_SOURCE = "compliance-tracker-cron"
ALERT_TIMEOUT_SECONDS = 10


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    settings: Settings | None = None,
) -> None:
    """
    Report a crashed or degraded job run.

    Always logs. Posts to the Slack webhook and the generic webhook when they
    are configured; a failing webhook is logged and never masks the job result.
    """
    settings = settings or get_settings()

    log_level = logging.CRITICAL if severity == "critical" else logging.ERROR
    logger.log(log_level, f"[CRON ALERT] {title}: {message}" + (f" | {details}" if details else ""))

    targets = [
        (settings.slack_alerts_webhook_url, _slack_payload),
        (settings.alert_webhook_url, _webhook_payload),
    ]
    for url, build_payload in targets:
        if not url:
            continue
        try:
            async with httpx.AsyncClient(timeout=ALERT_TIMEOUT_SECONDS) as client:
                await client.post(url, json=build_payload(title, message, severity, details))
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver alert '{title}': {e}")


def _slack_payload(title: str, message: str, severity: str, details: dict | None) -> dict:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
    ]
    if details:
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "\n".join(f"• *{k}*: {v}" for k, v in details.items()),
            },
        })
    blocks.append({
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": f"{severity.upper()} | {datetime.now(timezone.utc).isoformat()}",
        }],
    })

    color = "#dc2626" if severity == "critical" else "#f59e0b"
    return {"attachments": [{"color": color, "blocks": blocks}]}


def _webhook_payload(title: str, message: str, severity: str, details: dict | None) -> dict:
    return {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": ALERT_SOURCE,
        "details": details or {},
    }


# =============================================================================
# JOBS
# =============================================================================


async def _run_job(
    name: str,
    work: Callable[[AsyncSession], Awaitable[Any]],
    database_url: str | None,
    settings: Settings,
) -> dict[str, Any]:
    """
    Run one pipeline pass on a dedicated engine and time it.

    ``work`` receives a session and returns a result with ``to_dict()``.
    A crash is alerted as critical and re-raised. A run with failed sends is
    alerted as a warning.
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting {name} at {start_time.isoformat()}")

    engine = create_engine_for_url(database_url or settings.database_url_async)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    results: dict[str, Any] = {"started_at": start_time.isoformat(), "completed_at": None}
    try:
        async with session_factory() as session:
            outcome = await work(session)
            await session.commit()
        results.update(outcome.to_dict())
    except Exception as e:
        logger.error(f"{name} failed: {e}")
        await send_alert(
            title=f"{name} failed",
            message=f"The {name} crashed. Nothing sent in this run is lost; the next run retries.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
            settings=settings,
        )
        raise
    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"{name} completed in {results['duration_seconds']:.2f}s: "
        f"{results['sent']} sent, {results['skipped']} skipped, {results['failed']} failed"
    )

    if results["failed"] > 0:
        await send_alert(
            title=f"{name} completed with failures",
            message=f"{results['failed']} emails failed to send and will be retried.",
            severity="warning",
            details={
                "sent": results["sent"],
                "failed": results["failed"],
                "errors": results["errors"][:5],
            },
            settings=settings,
        )

    return results


async def run_flush_job(
    database_url: str | None = None,
    batch_size: int | None = None,
    sender: EmailSender | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Flush the email queue once."""
    settings = settings or get_settings()
    sender = sender or ResendEmailSender.from_settings(settings)

    async def work(session: AsyncSession):
        return await DigestComposer(session, sender, settings).flush(batch_size)

    return await _run_job("email queue flush", work, database_url, settings)


async def run_reminder_job(
    database_url: str | None = None,
    run_date: date | None = None,
    sender: EmailSender | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Send the daily reminder digests once."""
    settings = settings or get_settings()
    sender = sender or ResendEmailSender.from_settings(settings)

    async def work(session: AsyncSession):
        return await ReminderScanner(session, sender, settings).run(run_date)

    return await _run_job("compliance reminder job", work, database_url, settings)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the digest jobs."""
    parser = argparse.ArgumentParser(description="Run the compliance notification jobs")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string (defaults to settings)",
    )
    subparsers = parser.add_subparsers(dest="job", required=True)

    flush_parser = subparsers.add_parser("flush", help="Send queued status-change digests")
    flush_parser.add_argument("--batch-size", type=int, default=None, help="Maximum queue rows to read")

    reminders_parser = subparsers.add_parser("reminders", help="Send the daily reminder digests")
    reminders_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run date (YYYY-MM-DD, defaults to today in UTC)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.job == "flush":
        job = run_flush_job(args.database_url, batch_size=args.batch_size)
    else:
        job = run_reminder_job(args.database_url, run_date=args.date)

    try:
        results = asyncio.run(job)
    except Exception as e:
        logger.error(f"Job failed: {e}")
        sys.exit(1)

    logger.info(f"Job completed: {results}")


if __name__ == "__main__":
    main()
