"""
APScheduler service for periodic maintenance.

Runs the event closer on a fixed interval in a background thread. The job
is re-registered on every start, so the default in-memory job store is
enough.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from meetlines.config import get_settings
from meetlines.database import SessionLocal

logger = logging.getLogger(__name__)

AUTO_END_JOB_ID = "auto_end_events"

# Module-level scheduler instance (singleton)
_scheduler = None


def get_scheduler():
    """Return the global scheduler instance."""
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    return _scheduler


def run_auto_end_events():
    """Job body: close ended events using a dedicated session."""
    from meetlines.services.event_closer import close_ended_events

    db = SessionLocal()
    try:
        result = close_ended_events(db)
        logger.info("Auto-end run: %s", result["message"])
    except Exception:
        db.rollback()
        logger.exception("Auto-end run failed")
    finally:
        db.close()


def init_scheduler():
    """
    Initialize and start the scheduler.
    Called once during FastAPI startup.
    """
    global _scheduler
    if _scheduler is not None:
        return

    settings = get_settings()
    _scheduler = BackgroundScheduler(
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )
    _scheduler.add_job(
        run_auto_end_events,
        "interval",
        minutes=settings.auto_end_interval_minutes,
        id=AUTO_END_JOB_ID,
        replace_existing=True,
        name="Close events past their end date",
    )
    _scheduler.start()
    logger.info(
        "Scheduler started; auto-end every %d minutes", settings.auto_end_interval_minutes
    )


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler shut down")
