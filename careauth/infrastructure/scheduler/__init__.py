from careauth.infrastructure.scheduler.jobs import (
    cleanup_expired_credentials,
    purge_expired_otps,
)
from careauth.infrastructure.scheduler.main import scheduler, initialize_scheduler

__all__ = [
    "scheduler",
    "cleanup_expired_credentials",
    "purge_expired_otps",
    "initialize_scheduler",
]
