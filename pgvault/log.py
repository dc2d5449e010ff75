"""
Logging setup for pgvault.

Every line goes to stderr as ``<timestamp> <LEVEL>: <message>``. The level
names follow the short forms operators grep for in cron mail: DEBUG, INFO,
WARN, ERROR and FATAL.

Usage:
    from pgvault.log import init_logging
    init_logging(verbose=True)
    logging.getLogger(__name__).info("dumping")
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime

ROOT_LOGGER = "pgvault"

LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "FATAL",
}


class LevelPrefixFormatter(logging.Formatter):
    """Formatter that prints a timestamp and a short severity prefix."""

    def __init__(self, microseconds: bool = False) -> None:
        super().__init__()
        self.microseconds = microseconds

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created)
        if self.microseconds:
            timestamp = when.strftime("%Y/%m/%d %H:%M:%S.%f")
        else:
            timestamp = when.strftime("%Y/%m/%d %H:%M:%S")

        level = LEVEL_NAMES.get(record.levelno, record.levelname)
        return f"{timestamp} {level}: {record.getMessage()}"


def init_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Configure the package logger. Safe to call more than once."""
    logger = logging.getLogger(ROOT_LOGGER)

    for handler in list(logger.handlers):
        if getattr(handler, "_pgvault", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(LevelPrefixFormatter(microseconds=verbose))
    handler._pgvault = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False

    if verbose:
        logger.setLevel(logging.DEBUG)
    elif quiet:
        logger.setLevel(logging.WARNING)
    else:
        logger.setLevel(logging.INFO)

    return logger


def log_output(logger: logging.Logger, prefix: str, output: bytes, failed: bool) -> None:
    """Log combined child output, one record per line."""
    level = logging.ERROR if failed else logging.INFO
    for line in output.decode(errors="replace").splitlines():
        if line.strip():
            logger.log(level, f"{prefix}{line}")
