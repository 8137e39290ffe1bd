"""
Logging Setup
~~~~~~~~~~~~~

Configures the ``config_manager`` logger for the command-line tools: a
rotating log file under the log directory plus a stream on stderr for
the service journal.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import TextIO

__all__ = ["configure_logging", "LOG_FORMAT", "DATE_FORMAT"]

LOG_FORMAT = "[%(asctime)s] [%(levelname)-7s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

_ROOT = "config_manager"


def configure_logging(
    log_file: str | None = None,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Attach file and stream handlers to the package logger.

    Calling it again replaces the handlers it installed before. A log
    file that cannot be opened is reported on the stream and skipped.

    Args:
        log_file: Rotating log file path, or None for stream only.
        verbose: Log DEBUG messages as well.
        stream: Stream handler target, stderr by default.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(_ROOT)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("Cannot open log file %s: %s", log_file, exc)
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
    return logger
