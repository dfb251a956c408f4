"""
Logging utilities for the proxy.

Provides a consistent logging format and keeps bearer material out of log
lines.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs full request URLs at INFO, which include authorization codes.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_token(value: str | None, visible: int = 6) -> str:
    """Return a short prefix of a token suitable for log correlation."""
    if not value:
        return "<none>"
    return f"{value[:visible]}..."


__all__ = ["configure_logging", "mask_token"]
