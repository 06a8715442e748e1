from datetime import timedelta

from careauth.core.config import scheduler_logger, settings
from careauth.core.db import AsyncSessionLocal
from careauth.core.db.crud import credential_db
from careauth.core.db.models.base import utcnow
from careauth.core.services.otp import OTPService


async def purge_expired_otps(retention_hours: int | None = None) -> None:
    """
    Periodic task deleting OTP records that are terminal, or pending past
    their expiry, for longer than the retention window.

    Args:
        retention_hours (int | None): Window to keep. Defaults to
            ``OTP_RETENTION_HOURS``.
    """
    hours = (
        retention_hours if retention_hours is not None else settings.OTP_RETENTION_HOURS
    )
    async with AsyncSessionLocal.begin() as session:
        scheduler_logger.info(
            f"Starting purge of OTP records older than {hours} hours"
        )
        deleted_count = await OTPService.purge_expired(
            session, retention=timedelta(hours=hours), commit_self=False
        )
        scheduler_logger.info(
            f"Completed OTP purge. Deleted {deleted_count} record(s)."
        )


async def cleanup_expired_credentials(retention_days: int = 30) -> None:
    """
    Periodic task deleting credentials that were revoked or expired more than
    ``retention_days`` ago.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    async with AsyncSessionLocal.begin() as session:
        scheduler_logger.info(
            f"Starting cleanup of credentials older than {retention_days} days (cutoff: {cutoff})"
        )
        deleted_count = await credential_db.cleanup_expired(
            session, cutoff, commit_self=False
        )
        scheduler_logger.info(
            f"Completed credential cleanup. Deleted {deleted_count} record(s)."
        )
