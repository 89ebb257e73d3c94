"""Small helpers shared by the request normalizer and the parser."""
import logging
import re
from datetime import datetime, timezone as dt_timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

LEADING_INT_REGEX = re.compile(r'^\s*([+-]?[0-9]+)')


def pad(value: int) -> str:
    """Zero-pad a month or day number to two digits."""
    return f"{value:02d}"


def parse_leading_int(value: Optional[str]) -> Optional[int]:
    """
    Parse the integer at the start of a string.

    Surrounding whitespace is ignored and trailing garbage is dropped, so
    ``" 2025年"`` yields ``2025``.

    Args:
        value: Text to parse, may be None

    Returns:
        Parsed integer or None if the text does not start with digits
    """
    if not value:
        return None
    match = LEADING_INT_REGEX.match(value)
    if not match:
        return None
    return int(match.group(1))


def resolve_timezone(name: str) -> tzinfo:
    """Return the named zone, or UTC when the name is unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return dt_timezone.utc


def current_year_month(timezone_name: str, now: Optional[datetime] = None) -> Tuple[int, int]:
    """
    Current year and month as observed in the given timezone.

    Args:
        timezone_name: IANA timezone name
        now: Aware datetime to use instead of the current time

    Returns:
        Tuple of (year, month)
    """
    moment = now or datetime.now(dt_timezone.utc)
    local = moment.astimezone(resolve_timezone(timezone_name))
    return local.year, local.month


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(dt_timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"
