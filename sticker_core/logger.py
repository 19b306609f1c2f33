"""
Logging setup for sticker_core.

Provides a single package logger with console output and an optional
log file, so the host application can keep a persistent audit of
ledger movements and schema migrations.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

# Global logger instance
logger: Optional[logging.Logger] = None

LOG_FORMAT = "[%(asctime)s] %(levelname)s:%(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    level: int | str = logging.INFO,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Set up the package logger with a console handler and an optional file handler.

    Args:
        level: Logging level, as an int or a level name such as "DEBUG"
        log_file: Optional path of a file that receives the same records

    Returns:
        Configured logger instance
    """
    global logger

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    logger = logging.getLogger("sticker_core")
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger to avoid duplicates
    logger.propagate = False

    return logger


def get_logger() -> logging.Logger:
    """
    Get the global logger instance.

    Returns:
        Logger instance or creates a basic one if not initialized
    """
    global logger
    if logger is None:
        logger = logging.getLogger("sticker_core")
        logger.setLevel(logging.INFO)

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
            logger.propagate = False

    return logger
