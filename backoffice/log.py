"""
Logging configuration for the back office.

Provides consistent log formatting across all modules. Modules keep using
``logging.getLogger(__name__)``; this only installs the handler once.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | int = logging.INFO) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level name or number (default: INFO)

    Returns:
        The ``backoffice`` logger
    """
    logger = logging.getLogger("backoffice")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger
