"""
Logging configuration for taskvault.

The library modules only ever call ``logger``; sinks are installed once by the
command line entry point (or by the host application).
"""

import os
import sys
from typing import Optional

from loguru import logger


DEFAULT_LOG_LEVEL = os.environ.get("TASKVAULT_LOG_LEVEL", "INFO")

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Install the stderr sink and, optionally, a rotating file sink.

    Args:
        level: Minimum level to emit (defaults to TASKVAULT_LOG_LEVEL or INFO)
        log_file: Optional path of a log file
    """
    level = (level or DEFAULT_LOG_LEVEL).upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="10 MB",
            retention="7 days",
            enqueue=True,
        )
    logger.debug(f"Logging configured at level {level}")


def mask_secret(secret: Optional[str]) -> str:
    """Mask a credential for logging, keeping only its last four characters."""
    if not secret:
        return "<unset>"
    if len(secret) <= 4:
        return "***"
    return f"***{secret[-4:]}"
