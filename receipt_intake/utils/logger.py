"""Logging for the receipt intake service and CLI.

Log records go to stderr so that ``receipt-intake extract`` can print
its JSON result on stdout. Chatty third-party loggers (the geocoding
HTTP client and Pillow's image plugins) are held at WARNING unless the
service itself runs at DEBUG.
"""

import logging
import sys

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_NOISY_LOGGERS = ("httpx", "httpcore", "PIL")


def setup_logging(level: str = "INFO") -> None:
    """Install the stderr handler on the root logger.

    Calling this again once a handler exists leaves the configuration
    untouched, so uvicorn or pytest handlers are never replaced.

    Args:
        level: Level name such as ``"DEBUG"``; unknown names mean INFO.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)
    root.setLevel(numeric_level)

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a ``receipt_intake`` module."""
    return logging.getLogger(name)
