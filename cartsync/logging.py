"""
Centralized logging configuration for cartsync.

Usage:
    from cartsync.logging import get_logger
    logger = get_logger(__name__)

    logger.info("Cart merged")
    logger.error("Merge failed", exc_info=True)
"""

import logging
import sys
from functools import cache

from cartsync.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_root_logger() -> None:
    """Configure root logger with a stdout handler."""
    root = logging.getLogger()

    # Only configure if no handlers exist (pytest, uvicorn install their own)
    if root.handlers:
        return

    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # HTTP client noise from the inventory adapter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


_configure_root_logger()


@cache
def get_logger(name: str) -> logging.Logger:
    """Module logger; call with __name__."""
    return logging.getLogger(name)


def _escape_log_injection(value: str) -> str:
    """Escape control characters that could forge log entries (CWE-117)."""
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None, max_length: int = 24) -> str:
    """
    Sanitize an owner key, session id or user id for logging.

    Session ids come straight from the client, so they are escaped and
    truncated before they reach a log line.

    Args:
        id_value: ID value to sanitize (can be None)
        max_length: Maximum length to keep

    Returns:
        Sanitized ID string or "N/A" if empty
    """
    if not id_value:
        return "N/A"
    safe_value = _escape_log_injection(str(id_value))
    return safe_value[:max_length] if len(safe_value) > max_length else safe_value


__all__ = [
    "LOG_FORMAT",
    "get_logger",
    "sanitize_id_for_logging",
]
