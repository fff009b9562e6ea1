"""Logging configuration for the devstack CLI.

Operator-facing output goes through the progress reporter; the log mirrors
phase and step transitions and carries tracebacks for unexpected errors.
"""

import logging
import logging.config
import sys
from typing import Any

logger = logging.getLogger(__name__)


def setup_logging(level: str = "WARNING", *, debug: bool = False) -> None:
    """Configure logging for a single CLI invocation."""
    level = level.upper()
    if debug:
        level = "DEBUG"

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": (
                    "%(asctime)s | %(name)s | %(levelname)s | "
                    "%(filename)s:%(lineno)d | %(funcName)s | %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "simple",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "devstack": {
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }

    logging.config.dictConfig(logging_config)
    logger.debug("Logging configured with level %s", level)
