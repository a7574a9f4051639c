"""
Time Code Helpers
Parsing of shot timestamps and durations
"""

import re

from .exceptions import InvalidTimestampError

DEFAULT_DURATION_SECONDS = 5

_DIGITS = re.compile(r"^\d+$")
_FIRST_INT = re.compile(r"(\d+)")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def parse_timestamp(timestamp: str) -> int:
    """
    Convert a shot timestamp to whole seconds.

    Accepts MM:SS (minutes*60 + seconds) and H:MM:SS
    (hours*3600 + minutes*60 + seconds). Any other shape raises
    InvalidTimestampError.
    """
    if not isinstance(timestamp, str):
        raise InvalidTimestampError(str(timestamp))

    parts = timestamp.strip().split(":")
    if len(parts) not in (2, 3) or not all(_DIGITS.match(part) for part in parts):
        raise InvalidTimestampError(timestamp)

    values = [int(part) for part in parts]
    if len(values) == 2:
        minutes, seconds = values
        return minutes * 60 + seconds

    hours, minutes, seconds = values
    return hours * 3600 + minutes * 60 + seconds


def parse_duration(duration: str) -> int:
    """Leading integer of a duration string ("12s" -> 12), 5 when there is none"""
    match = _FIRST_INT.search(duration or "")
    return int(match.group(1)) if match else DEFAULT_DURATION_SECONDS


def format_timestamp(seconds: float) -> str:
    """Format seconds as MM:SS, or H:MM:SS from one hour up"""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def safe_timestamp(timestamp: str) -> str:
    """Timestamp usable in a file name ("01:05" -> "01-05")"""
    return _NON_ALNUM.sub("-", timestamp.strip())
