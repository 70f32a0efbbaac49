"""
SafeChat - Utility functions.

Created by SafeChat contributors

Provides small helpers for validation, display-name cleanup and timestamps.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def validate_port(port: int) -> bool:
    """
    Validate a port number.

    Port 0 is accepted and means "pick any free port".

    Args:
        port: Port number to validate

    Returns:
        True if valid, False otherwise
    """
    if isinstance(port, bool) or not isinstance(port, int):
        return False
    return port == 0 or 1024 <= port <= 65535


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        s: String to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def clean_display_name(name: Optional[str], max_length: int) -> str:
    """
    Strip control characters and surrounding whitespace from a display name.

    Returns an empty string for names that are missing or empty after
    cleaning, so the caller can assign a default.
    """
    if not isinstance(name, str):
        return ""
    cleaned = "".join(char for char in name if ord(char) >= 32 and ord(char) != 127)
    return truncate_string(cleaned.strip(), max_length, suffix="")


def timestamp_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def format_timestamp_ms(ms: int, format_str: str = "%H:%M:%S") -> str:
    """
    Format a millisecond epoch timestamp for display.

    Args:
        ms: Milliseconds since the epoch
        format_str: strftime format string

    Returns:
        Formatted local time, or the raw number if it cannot be converted
    """
    try:
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone()
        return dt.strftime(format_str)
    except (OverflowError, OSError, ValueError, TypeError) as e:
        logger.debug(f"Failed to format timestamp '{ms}': {e}")
        return str(ms)
