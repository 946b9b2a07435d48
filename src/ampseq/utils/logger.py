# src/ampseq/utils/logger.py
from __future__ import annotations

import logging
import re
from typing import Optional

from colorama import Fore, Style

_LOGGER_NAME = "ampseq"
_ANSI = re.compile(r"\x1b\[[0-9;]*m")

_LEVEL_COLORS = {
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """'filter' -> the 'ampseq.filter' logger; no name -> the package root logger."""
    if name:
        return logging.getLogger(f"{_LOGGER_NAME}.{name}")
    return logging.getLogger(_LOGGER_NAME)


def log_success(message: str, logger: Optional[logging.Logger] = None) -> None:
    (logger or get_logger()).info(f"{Fore.GREEN}{message}{Style.RESET_ALL}")


class _ConsoleFormatter(logging.Formatter):
    """Warnings and errors in color."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        return f"{color}{text}{Style.RESET_ALL}" if color else text


class _PlainFormatter(logging.Formatter):
    """File output never carries terminal color codes."""

    def format(self, record: logging.LogRecord) -> str:
        return _ANSI.sub("", super().format(record))


def setup_logger(log_file: str = "ampseq.log", verbose: bool = False) -> logging.Logger:
    """
    Configure the 'ampseq' logger once per process:
      - console at INFO (DEBUG with verbose=True), colored by level
      - everything at DEBUG to *log_file*, uncolored
    Later calls return the configured logger unchanged.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if getattr(setup_logger, "_configured", False):
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(_ConsoleFormatter("%(asctime)s - %(levelname)s - [%(name)s] %(message)s", "%H:%M:%S"))

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(_PlainFormatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))

    logger.addHandler(ch)
    logger.addHandler(fh)

    setup_logger._configured = True  # type: ignore[attr-defined]
    return logger
