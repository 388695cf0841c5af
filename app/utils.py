"""
Shared helpers.
"""
import logging

from app.core import config


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOGGER_NAME = "app"


def _configure_root_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Avoid duplicate handlers on uvicorn reload
    if logger.handlers:
        return logger

    logger.setLevel(config.LOG_LEVEL)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stream_handler)
    return logger


_configure_root_logger()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger below the application logger.

    Usage:
        log = get_logger(__name__)
    """
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
