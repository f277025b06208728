"""
ARQ Background Worker for Async Jobs
Runs the check-in reminder sweep and keeps pre-created weeks topped up
"""

import logging
import os

from arq.connections import RedisSettings
from arq.cron import cron

from . import models  # noqa: F401 - ensure models are registered
from .config import REMINDER_SWEEP_MINUTES, use_pre_created_assignments
from .database import SessionLocal
from .domain.checkins.reminders import ReminderScheduler
from .domain.checkins.service import CheckInService
from .domain.checkins.windows import utcnow
from .services.notification_service import EmailNotificationDispatcher

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """REDIS_URL (redis:// or rediss://) wins over the discrete REDIS_* variables"""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        settings = RedisSettings.from_dsn(redis_url)
    else:
        settings = RedisSettings(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            password=os.getenv("REDIS_PASSWORD"),
            ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
        )
    settings.conn_timeout = 15
    settings.conn_retry_delay = 1
    return settings


async def checkin_reminder_sweep_task(ctx):
    """
    Cron job: send window-open notices and closing_24h / closing_1h / closed_2h
    reminders that are due. Failed or timed-out items stay unfired and are
    picked up by the next run.
    """
    logger.info("🔔 Starting check-in reminder sweep")

    db = SessionLocal()
    try:
        summary = await ReminderScheduler(EmailNotificationDispatcher()).run_sweep(db, utcnow())
        return summary.model_dump()
    except Exception as e:
        logger.error(f"❌ Reminder sweep failed: {str(e)}")
        raise
    finally:
        db.close()


async def extend_precreated_series_task(ctx):
    """Daily cron job: store upcoming weeks for series without an end date"""
    if not use_pre_created_assignments():
        logger.info("Pre-created assignments disabled, nothing to extend")
        return {"created": 0}

    db = SessionLocal()
    try:
        created = CheckInService(db).extend_precreated_horizon(utcnow())
        logger.info(f"✅ Pre-created {created} upcoming check-in weeks")
        return {"created": created}
    except Exception as e:
        logger.error(f"❌ Extending pre-created weeks failed: {str(e)}")
        raise
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [
        checkin_reminder_sweep_task,
        extend_precreated_series_task,
    ]
    redis_settings = get_redis_settings()

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "20"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "600"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "3600"))

    health_check_interval = 60

    max_tries = 3

    cron_jobs = [
        cron(
            checkin_reminder_sweep_task,
            minute=set(range(0, 60, REMINDER_SWEEP_MINUTES)),
            unique=True,
        ),
        cron(extend_precreated_series_task, hour=0, minute=15),  # 12:15 AM UTC
    ]

    logger.info(f"🔧 ARQ Worker configured: max_jobs={max_jobs}, timeout={job_timeout}s")
