"""
Logging setup — console plus a rotating file under LOG_DIR.
"""
import logging
import os
from logging.handlers import RotatingFileHandler

from payu_provider.config import Settings, get_settings

LOGGER_NAME = "payu_provider"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """Attach console and file handlers to the package logger (once)."""
    settings = settings or get_settings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper())

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    os.makedirs(settings.LOG_DIR, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(settings.LOG_DIR, "payu.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
