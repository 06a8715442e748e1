"""
Scheduler for OTP and credential housekeeping.

Standalone Usage:
    python -m careauth.infrastructure.scheduler.main
"""

import asyncio
import signal
from datetime import timezone

from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from careauth.core.config import scheduler_logger, settings


def _sync_database_url() -> str:
    """Convert the async DATABASE_URL to a synchronous one for APScheduler.

    Only the driver part of the scheme (before ://) changes, so the rest of
    the URL, including any percent-encoded password, is preserved exactly.
    """
    scheme, rest = settings.DATABASE_URL.split("://", 1)
    scheme = scheme.replace("+asyncpg", "").replace("+aiosqlite", "")
    return f"{scheme}://{rest}"


scheduler = AsyncIOScheduler(
    jobstores={
        "maintenance": SQLAlchemyJobStore(
            url=_sync_database_url(),
            tablename="scheduler_maintenance_jobs",
        ),
    },
    timezone=timezone.utc,
)


def schedule_purge_expired_otps_job(interval_minutes: int = 60) -> None:
    """Schedule ``purge_expired_otps`` every ``interval_minutes``."""
    # Import here to avoid circular import issues
    from careauth.infrastructure.scheduler.jobs import purge_expired_otps

    scheduler_logger.info(
        f"Scheduling 'purge_expired_otps' job to run every {interval_minutes} minutes"
    )
    scheduler.add_job(
        purge_expired_otps,
        trigger=IntervalTrigger(minutes=interval_minutes, timezone=timezone.utc),
        replace_existing=True,
        id="purge_expired_otps_job",
        jobstore="maintenance",
        misfire_grace_time=60 * 5,  # 5 minutes grace time
    )
    scheduler_logger.info("'purge_expired_otps' job scheduled successfully.")


def schedule_cleanup_expired_credentials_job(retention_days: int = 30) -> None:
    """Schedule ``cleanup_expired_credentials`` daily at 3:00 AM UTC."""
    from careauth.infrastructure.scheduler.jobs import cleanup_expired_credentials

    scheduler_logger.info(
        "Scheduling 'cleanup_expired_credentials' job to run daily at 3:00 AM UTC"
    )
    scheduler.add_job(
        cleanup_expired_credentials,
        trigger=CronTrigger(hour=3, minute=0, timezone=timezone.utc),
        replace_existing=True,
        id="cleanup_expired_credentials_job",
        jobstore="maintenance",
        misfire_grace_time=60 * 60,  # 1 hour grace time
        kwargs={"retention_days": retention_days},
    )
    scheduler_logger.info("'cleanup_expired_credentials' job scheduled successfully.")


def initialize_scheduler() -> None:
    """Register every housekeeping job on the scheduler."""
    schedule_purge_expired_otps_job(
        interval_minutes=settings.OTP_PURGE_INTERVAL_MINUTES
    )
    schedule_cleanup_expired_credentials_job(
        retention_days=settings.CREDENTIAL_RETENTION_DAYS
    )


async def main() -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    shutdown_event = asyncio.Event()

    def handle_shutdown(signum, frame):
        scheduler_logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    scheduler_logger.info("Starting standalone scheduler...")

    try:
        scheduler.start()
        scheduler_logger.info("Scheduler started successfully. Waiting for jobs...")
        initialize_scheduler()  # Schedule jobs after starting the scheduler
        await shutdown_event.wait()

    except Exception as e:
        scheduler_logger.exception(f"Scheduler error: {e}")
        raise

    finally:
        scheduler_logger.info("Shutting down scheduler...")
        if scheduler.running:
            scheduler.shutdown(wait=True)
            scheduler_logger.info("Scheduler stopped successfully.")
        scheduler_logger.info("Scheduler shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
