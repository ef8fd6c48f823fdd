"""
Helper Utility Module

This module provides the stateless text and date helpers shared by the
platform adapters.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

ELLIPSIS = "..."


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is valid.

    Args:
        url: The URL to validate

    Returns:
        bool: True if the URL is valid, False otherwise
    """
    try:
        result = urlparse(url)
        return all([result.scheme, result.netloc])
    except Exception:
        return False


def truncate_text(text: str, max_length: int) -> str:
    """
    Truncate text to a maximum length, ending in an ellipsis when cut.

    The result is exactly max_length characters long whenever truncation
    happens. Lengths are counted in characters, so a multi-byte character is
    never split.

    Args:
        text: The text to truncate
        max_length: Maximum length of the result, ellipsis included

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text
    if max_length <= 0:
        return ""
    if max_length <= len(ELLIPSIS):
        return text[:max_length]

    return text[:max_length - len(ELLIPSIS)] + ELLIPSIS


def localize(value: datetime, tz_name: str) -> datetime:
    """
    Express a datetime in the given IANA timezone.

    Naive datetimes are read as wall-clock time in that zone; aware ones are
    converted into it.

    Args:
        value: The datetime to localize
        tz_name: IANA timezone name, e.g. "America/Los_Angeles"

    Returns:
        datetime: An aware datetime in tz_name
    """
    tz = ZoneInfo(tz_name)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def to_utc(value: datetime) -> datetime:
    """Convert an aware datetime to UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc_iso(value: datetime) -> str:
    """Format a datetime as "YYYY-MM-DDTHH:MM:SSZ" in UTC."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_epoch_millis(value: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(to_utc(value).timestamp() * 1000)


def build_address(parts: List[Optional[str]]) -> str:
    """
    Join the non-empty address parts with ", ".

    Args:
        parts: Address components in display order

    Returns:
        str: The formatted address
    """
    return ", ".join(part for part in parts if part)


def safe_get(data: Dict[str, Any], *keys, default: Any = None) -> Any:
    """
    Safely get a value from a nested dictionary.

    Args:
        data: The dictionary to search
        *keys: The keys to follow
        default: Default value if key doesn't exist

    Returns:
        The value at the specified keys or the default value
    """
    for key in keys:
        try:
            data = data[key]
        except (KeyError, TypeError, IndexError):
            return default
    return data
