from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI

from .config import get_settings
from .db import Base, SessionLocal, engine
from .emailer import email_enabled
from .logging_setup import purge_old_logs, setup_logging
from .reminders import reminder_tz, send_daily_digest, send_task_reminders
from .routers import api_reports
from .utils.time_utils import get_app_tz
from .version import APP_VERSION


settings = get_settings()

setup_logging(level=settings.logging.level, log_dir=settings.logging.dir)
logger = logging.getLogger("taskreport")


app = FastAPI(title=settings.app.name, version=APP_VERSION)

app.include_router(api_reports.router, prefix="/api/reports", tags=["reports"])


scheduler: BackgroundScheduler | None = None


def _reminder_job() -> None:
    if not email_enabled():
        logger.info("Skipping task reminders: email is not configured")
        return
    db = SessionLocal()
    try:
        send_task_reminders(db)
    except Exception:
        logger.exception("Error while sending task reminders")
    finally:
        db.close()


def _digest_job() -> None:
    if not email_enabled():
        logger.info("Skipping daily digest: email is not configured")
        return
    db = SessionLocal()
    try:
        send_daily_digest(db)
    except Exception:
        logger.exception("Error while sending the daily digest")
    finally:
        db.close()


def _log_retention_job() -> None:
    try:
        purged = purge_old_logs(retention_days=int(settings.logging.retention_days), log_dir=settings.logging.dir)
        if purged:
            logger.info("Purged %s old log files", purged)
    except Exception:
        logger.exception("Error while purging old log files")


def configure_jobs(sched: BackgroundScheduler) -> None:
    s = get_settings()
    # Falls back to UTC, with a warning, when the configured zone is unknown.
    tz = reminder_tz()

    if s.reminders.enabled:
        sched.add_job(
            _reminder_job,
            "cron",
            hour=int(s.reminders.hour),
            minute=int(s.reminders.minute),
            timezone=tz,
            id="task_reminders",
            replace_existing=True,
        )
        logger.info("Task reminders scheduled daily at %02d:%02d (%s)", int(s.reminders.hour), int(s.reminders.minute), tz)

    if s.digest.enabled:
        sched.add_job(
            _digest_job,
            "cron",
            hour=int(s.digest.hour),
            minute=int(s.digest.minute),
            timezone=tz,
            id="daily_digest",
            replace_existing=True,
        )
        logger.info("Daily digest scheduled at %02d:%02d (%s)", int(s.digest.hour), int(s.digest.minute), tz)

    if int(s.logging.retention_days) > 0:
        sched.add_job(
            _log_retention_job,
            "cron",
            hour=0,
            minute=15,
            timezone=get_app_tz(),
            id="log_retention",
            replace_existing=True,
        )


@app.on_event("startup")
def on_startup() -> None:
    global scheduler

    Base.metadata.create_all(bind=engine)

    # Best-effort purge at startup.
    _log_retention_job()

    scheduler = BackgroundScheduler(timezone="UTC")
    configure_jobs(scheduler)
    app.state.scheduler = scheduler
    scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"status": "ok", "version": APP_VERSION}
