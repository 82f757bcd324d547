"""
Utility functions for common operations across the toolkit.
"""

import datetime
from typing import Optional, Union

import pytz


def format_duration(seconds: Union[int, float, datetime.timedelta, None]) -> str:
    """
    Format a duration compactly.

    Args:
        seconds: Seconds or a timedelta

    Returns:
        String like "2h 05m", "3m 12s" or "41s"; "-" for None
    """
    if seconds is None:
        return "-"
    if isinstance(seconds, datetime.timedelta):
        seconds = seconds.total_seconds()

    total = int(max(0, seconds))
    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    if days:
        return f"{days}d {hours:02d}h"
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_timestamp(timestamp: Union[int, float, datetime.datetime, None],
                     timezone: Optional[str] = None) -> str:
    """
    Format a timestamp for display, converted to the given timezone.

    Args:
        timestamp: Unix timestamp or datetime object
        timezone: Optional timezone name (default is UTC)

    Returns:
        Formatted timestamp string
    """
    if timestamp is None:
        return "-"
    if isinstance(timestamp, (int, float)):
        dt = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)
    elif isinstance(timestamp, datetime.datetime):
        dt = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=datetime.timezone.utc)
    else:
        return str(timestamp)

    if timezone:
        try:
            dt = dt.astimezone(pytz.timezone(timezone))
        except pytz.exceptions.UnknownTimeZoneError:
            # Unknown zone names fall back to UTC
            pass

    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def green(text):
    """Format text as green."""
    return f"\033[92m{text or ''}\033[0m"


def yellow(text):
    """Format text as yellow."""
    return f"\033[93m{text or ''}\033[0m"


def red(text):
    """Format text as red."""
    return f"\033[91m{text or ''}\033[0m"


def bright_cyan(text):
    """Format text as bright cyan."""
    return f"\033[96m{text or ''}\033[0m"
