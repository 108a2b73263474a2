"""Logging utilities for tmux-runner."""

from __future__ import annotations

import logging
from typing import Final

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LEVELS: Final[dict[str, int]] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def configure_logging(level: str = "INFO", fmt: str | None = None) -> None:
    """Configure process-wide logging for the CLI.

    Calling it again only changes the root level; handlers are installed once.

    Args:
        level: Logging level name (e.g., "INFO", "DEBUG").
        fmt: Optional logging format string. Defaults to a pipe-separated format.
    """

    logging.basicConfig(
        level=normalize_level(level),
        format=fmt or DEFAULT_LOG_FORMAT,
    )
    logging.getLogger().setLevel(normalize_level(level))


def get_logger(name: str) -> logging.Logger:
    """Return the logger for the given module or component."""

    return logging.getLogger(name)


def normalize_level(level: str) -> int:
    """Map a level name to its numeric value, falling back to INFO."""

    return _LEVELS.get(level.strip().upper(), logging.INFO)


def enable_debug_logging(name: str = "tmux_runner") -> None:
    """Lower the level of the package logger to DEBUG."""

    logging.getLogger(name).setLevel(logging.DEBUG)
