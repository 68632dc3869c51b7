"""
console_capture/utils/logger.py

Logger factory shared by every module in the package.
"""

import logging
import sys

from console_capture.config import Config

_PACKAGE_LOGGER_NAME = "console_capture"


def _configure_package_logger() -> logging.Logger:
    """
    Attach a single stderr handler to the package root logger.
    Stdout stays free for NDJSON output.
    """
    package_logger = logging.getLogger(_PACKAGE_LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            logging.Formatter(fmt=Config.LOG_FORMAT, datefmt=Config.LOG_DATE_FORMAT)
        )
        package_logger.addHandler(handler)
        package_logger.setLevel(Config.LOG_LEVEL)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the package namespace.
    Args:
        name: Usually the caller's __name__.
    Returns:
        The configured logger.
    """
    _configure_package_logger()
    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """Change the level of every logger in the package."""
    _configure_package_logger().setLevel(level)
