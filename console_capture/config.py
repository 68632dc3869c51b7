"""
console_capture/config.py

Centralized environment variable configuration.
"""

import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


class Config():
    """
    Centralized configuration for environment variables.
    """

    # remote debugging endpoint
    CDP_HOST: str = os.getenv("CDP_HOST", "127.0.0.1")
    CDP_PORT: int = int(os.getenv("CDP_PORT", "9222"))

    # output
    CAPTURE_LOG_FILE: str = os.getenv("CAPTURE_LOG_FILE", "browser-console.ndjson")

    # logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "[%(asctime)s] %(levelname)s:%(name)s:%(lineno)d - %(message)s",
    )
    LOG_DATE_FORMAT: str = os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S")

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
