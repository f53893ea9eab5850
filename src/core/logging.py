"""Application logger and log-safe string helper"""
import logging
import os
import sys

from src.core.config import settings

LOGGER_NAME = "event_discovery"

# DEBUG output is suppressed in production
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development") == "production"

DEV_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
PROD_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "httpx", "asyncio")

SECRET_MARKERS = ("password", "token", "api_key", "secret", "authorization", "bearer")


def setup_logging() -> logging.Logger:
    """Configure the application logger once and return it"""
    app_logger = logging.getLogger(LOGGER_NAME)

    level_name = settings.log_level.upper()
    if IS_PRODUCTION and level_name == "DEBUG":
        level_name = "INFO"
    level = getattr(logging, level_name, logging.INFO)
    app_logger.setLevel(level)

    if not app_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter(fmt=PROD_FORMAT if IS_PRODUCTION else DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        app_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return app_logger


logger = setup_logging()


def sanitize_for_log(value: str, max_length: int = 100) -> str:
    """Log-safe rendering of a user supplied string

    Anything that looks like it carries a credential is replaced
    wholesale; everything else is truncated to ``max_length``.

    Args:
        value: string to log
        max_length: maximum length kept

    Returns:
        masked and truncated string
    """
    if not value:
        return "[empty]"

    lowered = value.lower()
    if any(marker in lowered for marker in SECRET_MARKERS):
        return "***"

    if len(value) > max_length:
        return value[:max_length] + "..."
    return value
