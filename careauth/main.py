from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.config import app_logger, settings
from careauth.core.dependencies import get_async_session
from careauth.core.exceptions.handlers import (
    exception_schema,
    register_exception_handlers,
)
from careauth.core.exceptions.types import AppException
from careauth.core.services import CodeCipher, NotificationDispatcher
from careauth.infrastructure.messaging import publish_event, start_consumers
from careauth.infrastructure.scheduler import initialize_scheduler, scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting application...")
    consumer_connection = None

    # Fail fast on a bad encryption key instead of on the first issued code
    app_logger.info("Initializing code cipher...")
    CodeCipher.init(settings.OTP_ENCRYPTION_KEYS)
    app_logger.info("Code cipher initialized successfully.")

    NotificationDispatcher.init(publish_event)
    app_logger.info("Notification dispatcher initialized successfully.")

    # Start the scheduler (only if enabled)
    if settings.ENABLE_SCHEDULER:
        app_logger.info("Starting scheduler...")
        scheduler.start()
        initialize_scheduler()  # Schedule jobs after starting the scheduler
        app_logger.info("Scheduler started successfully.")
    else:
        app_logger.info("Scheduler disabled via ENABLE_SCHEDULER setting.")

    # Start message consumers (only if enabled)
    if settings.ENABLE_MESSAGING:
        app_logger.info("Starting message consumers...")
        consumer_connection = await start_consumers(keep_alive=False)
        app_logger.info("Message consumers started successfully.")
    else:
        app_logger.info("Messaging disabled via ENABLE_MESSAGING setting.")

    yield

    app_logger.info("Shutting down application...")

    # Let detached dispatch tasks finish before the connection goes away
    await NotificationDispatcher.drain()

    if consumer_connection:
        await consumer_connection.close()
        app_logger.info("Message consumer connection closed successfully.")

    if settings.ENABLE_SCHEDULER and scheduler.running:
        scheduler.shutdown()
        app_logger.info("Scheduler stopped successfully.")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    responses=exception_schema,
)

register_exception_handlers(app)


@app.head("/health", include_in_schema=False)
@app.get("/health")
async def health_check(session: Annotated[AsyncSession, Depends(get_async_session)]):
    """Report whether the API and its database are reachable."""
    health_status = {
        "status": "ok",
        "checks": {"database": "ok"},
    }

    try:
        async with session.begin():
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                health_status["checks"]["database"] = "unhealthy"
                health_status["status"] = "degraded"
    except Exception as e:
        app_logger.error(f"Database health check failed: {e}")
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "degraded"

    if health_status["status"] != "ok":
        raise AppException(
            "One or more health checks failed.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=health_status,
        )

    return health_status
