import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

# Track if Sentry has been initialized (global singleton)
_sentry_initialized = False


def init_sentry(
    dsn: str,
    environment: str = "development",
    traces_sample_rate: float = 1.0,
) -> bool:
    """
    Initialize Sentry SDK globally (call once at process startup).

    Error-level log records become Sentry events, which is how storage
    integrity faults (corrupted OTP ciphertext, failed issuance) raise alerts.

    Args:
        dsn (str): Sentry DSN for error tracking.
        environment (str): Sentry environment name (development/production).
        traces_sample_rate (float): Performance monitoring sample rate (0.0 to 1.0).

    Returns:
        bool: True if Sentry was initialized, False if already initialized or no DSN.
    """
    global _sentry_initialized

    if _sentry_initialized:
        return False

    if not dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.asyncio import AsyncioIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_logging = LoggingIntegration(
        level=logging.INFO,  # breadcrumbs
        event_level=logging.ERROR,
    )

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[sentry_logging, AsyncioIntegration()],
    )

    _sentry_initialized = True
    return True


def setup_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    sentry_tag: Optional[str] = None,
) -> logging.Logger:
    """
    Sets up a logger writing to a rotating file and to the console.

    Args:
        name (str): The name of the logger.
        log_file (str): The file path where the log messages will be written.
        level (int, optional): The logging level. Defaults to logging.INFO.
        sentry_tag (str, optional): Component tag attached in Sentry (e.g. "otp").

    Returns:
        logging.Logger: The configured logger instance.
    """
    if sentry_tag and _sentry_initialized:
        import sentry_sdk

        sentry_sdk.set_tag("component", sentry_tag)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Loggers are module-level singletons; don't stack handlers on re-import
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    for handler in (file_handler, console_handler):
        logger.addHandler(handler)

    return logger
