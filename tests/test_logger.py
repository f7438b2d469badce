"""Tests for the logging setup."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from cloudsave.logger import LOG_FILE_NAME, setup_logger


def test_file_sink_records_debug(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    setup_logger(log_dir, level="WARNING")
    logger.debug("probing candidate folder")
    logger.remove()

    text = (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8")
    assert "probing candidate folder" in text


def test_console_only(tmp_path: Path) -> None:
    setup_logger(None)
    logger.remove()
    assert not any(tmp_path.iterdir())
