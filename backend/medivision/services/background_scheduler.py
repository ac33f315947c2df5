"""
Background scheduler for verification cache housekeeping.
Uses APScheduler to purge expired verdicts so a durable cache store does not
grow without bound. Reads already evict stale records lazily; this job
catches the ones nobody asks about again.

Jobs:
  1. purge_verification_cache – every CACHE_PURGE_HOURS, delete expired records
"""

import atexit
import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask

from medivision.config import Config
from medivision.services.verification_cache import VerificationCache

logger = logging.getLogger("medivision.scheduler")

_scheduler = None


def init_scheduler(app: Flask, cache: VerificationCache) -> None:
    """
    Initialize and start the background scheduler.
    Must be called after the Flask app is fully configured.
    """
    global _scheduler

    if not Config.ENABLE_SCHEDULER:
        logger.info("Background scheduler disabled by configuration.")
        return

    # Only run scheduler in the main process (not in reloader subprocess)
    if os.environ.get("WERKZEUG_RUN_MAIN") != "true" and app.config.get("DEBUG"):
        logger.info("Scheduler deferred to reloader child process.")
        return

    if _scheduler and _scheduler.running:
        return

    _scheduler = BackgroundScheduler(daemon=True)
    _scheduler.add_job(
        func=_job_purge_cache,
        trigger=IntervalTrigger(hours=Config.CACHE_PURGE_HOURS),
        id="purge_verification_cache",
        name="Purge expired medication verification verdicts",
        replace_existing=True,
        kwargs={"cache": cache},
        misfire_grace_time=3600,
    )
    _scheduler.start()
    logger.info("Background scheduler started (cache purge every %s h).", Config.CACHE_PURGE_HOURS)

    # Shut down cleanly on app exit
    atexit.register(_shutdown_scheduler)


def _shutdown_scheduler() -> None:
    """Gracefully shut down the scheduler."""
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Background scheduler shut down.")


def _job_purge_cache(cache: VerificationCache) -> None:
    """Scheduled job: drop expired verification cache records."""
    removed = cache.purge_expired()
    logger.info("Verification cache purge complete: removed=%d", removed)
