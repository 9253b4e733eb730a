"""Logging setup for the API process."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import LOG_FILE, LOG_LEVEL

FORMATTER = logging.Formatter(
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ["uvicorn.access", "sqlalchemy.engine"]


def setup_logging() -> None:
    """Configure the root logger with a console handler and an optional file.

    Safe to call more than once; existing root handlers are replaced.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(LOG_LEVEL)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(FORMATTER)
    root_logger.addHandler(console_handler)

    if LOG_FILE:
        Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(FORMATTER)
        root_logger.addHandler(file_handler)

    quiet_level = logging.DEBUG if LOG_LEVEL == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).info("Logging initialised (level=%s)", LOG_LEVEL)
