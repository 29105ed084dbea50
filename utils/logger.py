"""
utils/logger.py
---------------
Process-wide logging setup for the data layer and the operator CLI.
Modules call `get_logger(__name__)`; the entry point may call
`configure_logging()` again to change the level at runtime.

Records go to stderr so CLI output on stdout stays machine-readable.
"""

import logging
import sys
from typing import Optional

from config import LOG_LEVEL

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_handler: Optional[logging.Handler] = None


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """
    Attach the shared stderr handler once and set the root level.

    Args:
        level: Level name such as "DEBUG"; defaults to LOG_LEVEL.
    """
    global _handler
    root = logging.getLogger()
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
        root.addHandler(_handler)
    root.setLevel(_level(level or LOG_LEVEL))


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger, configuring the root logger on first use.

    Args:
        name: Usually ``__name__`` of the calling module.
    """
    if _handler is None:
        configure_logging()
    return logging.getLogger(name)
