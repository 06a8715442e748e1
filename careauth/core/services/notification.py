"""
Fire-and-forget delivery of freshly issued OTP codes.

``NotificationDispatcher.send`` is called after the OTP record is committed.
It schedules a background task that publishes an ``OTPNotificationEvent`` to
the ``otp_notifications`` queue and returns immediately. Whatever happens to
that task is logged and never reaches the issuer or the stored record.

Registration (at process startup)::

    from careauth.core.services.notification import NotificationDispatcher
    from careauth.infrastructure.messaging import publish_event
    NotificationDispatcher.init(publish_event)
"""

import asyncio
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel

from careauth.core.config import notification_logger
from careauth.core.enums import OTPPurpose, OwnerKind
from careauth.core.exceptions.types import DispatchFailureException
from careauth.core.services.base import SingletonService
from careauth.core.utils import mask_identifier

OTP_NOTIFICATION_QUEUE = "otp_notifications"


class EventPublisher(Protocol):
    """Callable that publishes an event dict to a named queue."""

    async def __call__(
        self,
        queue_name: str,
        event: dict[str, Any],
        headers: dict[str, Any] = ...,
    ) -> None: ...


class OTPNotificationEvent(BaseModel):
    """Message placed on the notification queue for one issued code."""

    identifier: str
    purpose: OTPPurpose
    otp_code: str
    owner_kind: OwnerKind
    owner_id: int | None = None
    expires_at: datetime | None = None


class NotificationDispatcher(SingletonService):
    """
    Detached publisher for OTP notifications.

    Example:
        >>> NotificationDispatcher.init(publish_event)
        >>> task = NotificationDispatcher.send("a@b.com", OTPPurpose.PASSWORD_RESET, "042917")
    """

    _publisher: EventPublisher | None = None
    _tasks: set[asyncio.Task] = set()

    @classmethod
    def init(cls, publisher: EventPublisher) -> None:
        """Register the concrete queue publisher (called once at startup)."""
        cls._publisher = publisher
        cls._initialized = True

    @classmethod
    def send(
        cls,
        identifier: str,
        purpose: OTPPurpose,
        otp_code: str,
        owner_kind: OwnerKind = OwnerKind.GENERIC,
        owner_id: int | None = None,
        expires_at: datetime | None = None,
    ) -> asyncio.Task:
        """
        Schedule delivery of ``otp_code`` and return without waiting.

        Must be called from a running event loop. The returned task never
        raises.
        """
        event = OTPNotificationEvent(
            identifier=identifier,
            purpose=purpose,
            otp_code=otp_code,
            owner_kind=owner_kind,
            owner_id=owner_id,
            expires_at=expires_at,
        )
        task = asyncio.create_task(cls._deliver(event))
        # Keep a strong reference until the task finishes
        cls._tasks.add(task)
        task.add_done_callback(cls._tasks.discard)
        return task

    @classmethod
    async def _publish(cls, event: OTPNotificationEvent) -> None:
        if cls._publisher is None:
            raise DispatchFailureException("No notification publisher registered.")
        try:
            await cls._publisher(
                OTP_NOTIFICATION_QUEUE,
                event.model_dump(mode="json"),
            )
        except Exception as e:
            raise DispatchFailureException(
                f"Publishing to {OTP_NOTIFICATION_QUEUE} failed: {e}"
            ) from e

    @classmethod
    async def _deliver(cls, event: OTPNotificationEvent) -> None:
        target = mask_identifier(event.identifier)
        try:
            await cls._publish(event)
        except DispatchFailureException as e:
            notification_logger.warning(
                f"OTP dispatch failed: identifier={target}, "
                f"purpose={event.purpose.value}, error={e.message}"
            )
            return

        notification_logger.info(
            f"OTP queued: identifier={target}, purpose={event.purpose.value}"
        )

    @classmethod
    async def drain(cls) -> None:
        """Wait for every outstanding dispatch task (shutdown and tests)."""
        if cls._tasks:
            await asyncio.gather(*list(cls._tasks), return_exceptions=True)

    @classmethod
    def _reset(cls) -> None:
        super()._reset()
        cls._publisher = None
        cls._tasks = set()


__all__ = [
    "EventPublisher",
    "NotificationDispatcher",
    "OTPNotificationEvent",
    "OTP_NOTIFICATION_QUEUE",
]
