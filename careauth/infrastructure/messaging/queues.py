"""
Queue topology for the notification worker.

Each entry names a main queue, the handler consuming it and how failed
deliveries are retried. The retry queue carries a message TTL and dead-letters
back into the main queue, so a failed message re-enters the handler after the
TTL. Once ``max_retries`` is spent the message goes to the dead-letter queue.
"""

from functools import lru_cache
from typing import Annotated, Any, Callable

from pydantic import BaseModel, Field, model_validator

from careauth.core.services.notification import OTP_NOTIFICATION_QUEUE
from careauth.infrastructure.messaging.handlers import handle_otp_notification


class QueueConfig(BaseModel):
    name: str
    handler: Callable[[dict[str, Any]], Any]
    retry_queue: str | None = None
    retry_ttl: Annotated[int | None, Field(gt=0, description="In ms")] = None
    max_retries: Annotated[int | None, Field(gt=0)] = None
    dead_letter_queue: str | None = None

    @model_validator(mode="after")
    def check_retry_configuration(self) -> "QueueConfig":
        if self.retry_queue and not self.retry_ttl:
            raise ValueError("'retry_queue' needs 'retry_ttl'.")
        return self


QUEUE_CONFIG = [
    {
        "name": OTP_NOTIFICATION_QUEUE,
        "handler": handle_otp_notification,
        "retry_queue": f"{OTP_NOTIFICATION_QUEUE}_retry",
        "retry_ttl": 30 * 1000,
        "max_retries": 3,
        "dead_letter_queue": f"{OTP_NOTIFICATION_QUEUE}_dead",
    },
]


@lru_cache()
def get_queue_configs() -> list[QueueConfig]:
    return [QueueConfig.model_validate(config) for config in QUEUE_CONFIG]
