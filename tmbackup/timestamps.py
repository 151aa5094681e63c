"""Snapshot timestamp formatting and parsing for tmbackup.

Snapshot directories are named YYYY-MM-DD-HHMMSS in local time. This module
is the only place that knows how to turn such a name into an instant and
back again.
"""

from datetime import datetime
from typing import Optional
import re


# Timestamp format for snapshot directories
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

# Fixed-width shape of a snapshot name; parsing may still fail (e.g. month 13)
TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}-\d{6}$")

# Sorts before every real snapshot name
SENTINEL_NAME = "0000-00-00-000000"


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Format a datetime as a snapshot name.

    Args:
        moment: Datetime to format. Defaults to now.

    Returns:
        Name in YYYY-MM-DD-HHMMSS format
    """
    if moment is None:
        moment = datetime.now()
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(name: str) -> datetime:
    """
    Parse a snapshot name into a naive local datetime.

    Raises:
        ValueError: If the name is not a valid YYYY-MM-DD-HHMMSS timestamp
    """
    if not TIMESTAMP_PATTERN.match(name):
        raise ValueError(f"Not a snapshot timestamp: {name!r}")
    return datetime.strptime(name, TIMESTAMP_FORMAT)


def to_epoch(name: str) -> Optional[float]:
    """Return seconds since epoch for a snapshot name, or None if unparsable."""
    try:
        return parse_timestamp(name).timestamp()
    except (ValueError, OverflowError, OSError):
        return None


def is_timestamp_name(name: str) -> bool:
    """Check whether a directory name has the fixed-width snapshot shape."""
    return TIMESTAMP_PATTERN.match(name) is not None
