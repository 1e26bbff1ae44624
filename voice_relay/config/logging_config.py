"""
Logging setup for the relay.

Every module logs through the ``voice_relay`` logger with the session id in the
message. Console output always goes to stdout; a rotating log file is added unless
``LOG_FILE`` is set to an empty string. The websockets and httpx libraries log every
frame and request at DEBUG, so they are held at WARNING unless asked otherwise.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

from voice_relay.config.constants import LOGGER_NAME

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_FILE = os.getenv("LOG_FILE", str(Path("logs") / "voice_relay.log"))
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Transport libraries that are chatty at DEBUG
QUIET_LIBRARIES = ("websockets", "httpx", "httpcore")
LIBRARY_LOG_LEVEL = os.getenv("LIBRARY_LOG_LEVEL", "WARNING").upper()


def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default)


def _file_handler(log_file: str, formatter: logging.Formatter) -> RotatingFileHandler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: str = LOG_LEVEL,
    log_file: Optional[str] = LOG_FILE,
    quiet_libraries: Iterable[str] = QUIET_LIBRARIES,
) -> logging.Logger:
    """
    Configure the relay logger.

    Args:
        level: Log level name for the relay logger
        log_file: Rotating log file path; empty or None logs to the console only
        quiet_libraries: Third-party loggers held at ``LIBRARY_LOG_LEVEL``

    Returns:
        logging.Logger: The relay logger. Calling this again replaces its handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level(level, logging.INFO))
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            logger.addHandler(_file_handler(log_file, formatter))
        except OSError as e:
            logger.warning(f"File logging disabled, could not open {log_file}: {e}")

    logger.propagate = False

    for name in quiet_libraries:
        logging.getLogger(name).setLevel(_level(LIBRARY_LOG_LEVEL, logging.WARNING))

    logger.info(f"Logging configured at {logging.getLevelName(logger.level)}")
    return logger
