"""
Logging utilities.

WHAT: Root logger setup plus per-module logger access
WHY: Extraction clipping, dropped events and retries must be traceable
HOW: Python logging with console and file handlers configured from settings
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """
    Configure application logging.

    Args:
        level: Override for settings.LOG_LEVEL
        log_file: Override for settings.LOG_FILE (empty string disables the file handler)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    target = settings.LOG_FILE if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if target:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO; the observer reconnects often enough to drown the rest
    logging.getLogger("httpx").setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={level_name}, file={target or 'disabled'})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
