"""
Background Jobs for the compliance tracker.

This module contains scheduled jobs:
- digest_cron: queue flush and daily compliance reminders
"""

from .digest_cron import run_flush_job, run_reminder_job

__all__ = ["run_flush_job", "run_reminder_job"]
