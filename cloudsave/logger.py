"""Logging setup. Every module logs through the shared loguru ``logger``."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from loguru import logger

LOG_FILE_NAME = "cloudsave.log"

_LEVEL_ENV = "CLOUDSAVE_LOG_LEVEL"

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level:<7}</level> {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level:<7} [{name}:{function}:{line}] {message}"


def setup_logger(log_dir: Path | None = None, level: str = "INFO") -> None:
    """Send logs to stderr and, when *log_dir* is given, to a rotating file.

    ``CLOUDSAVE_LOG_LEVEL`` overrides *level* for the console. The file
    always records DEBUG and above.
    """
    console_level = os.environ.get(_LEVEL_ENV, level).upper()

    logger.remove()
    logger.add(sys.stderr, level=console_level, format=_CONSOLE_FORMAT, colorize=True)

    if log_dir is None:
        return
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / LOG_FILE_NAME,
        level="DEBUG",
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention=5,
        encoding="utf-8",
    )
    logger.debug(f"Logging to {log_dir / LOG_FILE_NAME}")
