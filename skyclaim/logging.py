"""Logging configuration for skyclaim.

Structured logging via loguru. Logging is disabled by default (library
behavior) and enabled by ``setup_logging``, which the CLI calls at
startup. Every record carries an ``account`` extra: account workers log
through ``logger.bind(account=alias)``, everything else shows ``SYSTEM``.

Example:
    from skyclaim.logging import LogConfig, setup_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", log_dir="logs"))
    ...
    teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeAlias

from loguru import logger

# Disable by default (library behavior)
logger.disable("skyclaim")

LogLevel: TypeAlias = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LOG_FILE_NAME = "skyclaim.log"

# Detailed format for console (with colors)
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>[{extra[account]}]</cyan> "
    "<level>{message}</level>"
)

# Format for file output (no colors)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | [{extra[account]}] {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console log level (DEBUG, INFO, WARNING, ERROR).
        log_dir: Directory for ``skyclaim.log``. None disables file output.
        console: Whether to log to stderr. Defaults to True.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    log_dir: str | None = "logs"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Configure logging and return handler IDs for cleanup."""
    logger.enable("skyclaim")
    logger.configure(extra={"account": "SYSTEM"})
    handler_ids: list[int] = []

    if config.console:
        hid = logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="skyclaim",
        )
        handler_ids.append(hid)

    if config.log_dir:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        hid = logger.add(
            log_dir / LOG_FILE_NAME,
            level="DEBUG",  # File always captures everything
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # Don't expose credentials in tracebacks
            enqueue=True,
            filter="skyclaim",
        )
        handler_ids.append(hid)

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("skyclaim")
