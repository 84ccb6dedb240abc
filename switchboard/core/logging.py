"""Logging configuration."""
import logging
import os
import sys
from pathlib import Path
from typing import Optional


_initialized = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Resolve log level from argument, environment or default."""
    level_str = (level or os.getenv("SWITCHBOARD_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_str, logging.INFO)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package logger once.

    Every module logs through ``logging.getLogger(__name__)``, so handlers
    attached to the ``switchboard`` logger cover the whole package.

    Args:
        level: Level name (falls back to SWITCHBOARD_LOG_LEVEL, then INFO)
        log_file: Optional file to mirror console output into

    Returns:
        The configured ``switchboard`` logger
    """
    global _initialized

    logger = logging.getLogger("switchboard")
    logger.setLevel(_get_log_level(level))

    if _initialized:
        return logger

    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _initialized = True
    return logger
