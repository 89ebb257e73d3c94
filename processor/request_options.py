"""Validation of events endpoint query parameters."""
import re
from datetime import date, datetime
from typing import Mapping, Optional

from processor.config import ServiceConfig
from processor.models import DateSelection, RequestOptions
from processor.utils import current_year_month, parse_leading_int

DATE_PARAM_REGEX = re.compile(r'^[0-9]{4}-[0-9]{2}-[0-9]{2}$')

MIN_YEAR = 2000
MAX_YEAR = 2100


class RequestError(Exception):
    """Client error raised for invalid query parameters."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def parse_date_param(value: str) -> Optional[date]:
    """
    Parse a ``YYYY-MM-DD`` value into a real calendar date.

    Args:
        value: Raw query parameter

    Returns:
        date or None when the format or the date itself is invalid
    """
    if not DATE_PARAM_REGEX.match(value):
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        return None


def parse_request(
    query_params: Optional[Mapping[str, str]],
    config: ServiceConfig,
    now: Optional[datetime] = None
) -> RequestOptions:
    """
    Resolve query parameters into validated request options.

    Missing year/month default to the current month in the configured
    timezone. A ``date`` parameter overrides both.

    Args:
        query_params: Query string parameters, may be None
        config: Service configuration
        now: Aware datetime to treat as the current time

    Returns:
        RequestOptions

    Raises:
        RequestError: If year, month or date is malformed or out of range
    """
    params = query_params or {}
    current_year, current_month = current_year_month(config.timezone, now)

    year_param = params.get('year')
    month_param = params.get('month')
    year = parse_leading_int(year_param) if year_param else current_year
    month = parse_leading_int(month_param) if month_param else current_month

    selection = None
    date_param = params.get('date')
    if date_param:
        selected = parse_date_param(date_param)
        if selected is None:
            raise RequestError("Invalid date parameter")
        selection = DateSelection(iso=selected.isoformat(), day=selected.day)
        year, month = selected.year, selected.month

    if year is None or not MIN_YEAR <= year <= MAX_YEAR:
        raise RequestError("Invalid year parameter")
    if month is None or not 1 <= month <= 12:
        raise RequestError("Invalid month parameter")

    bypass = params.get('skipCache')
    return RequestOptions(
        year=year,
        month=month,
        calendar_id=config.calendar_id,
        timezone=config.timezone,
        format='html' if params.get('format') == 'html' else 'json',
        bypass_cache=bypass in ('1', 'true'),
        date=selection,
    )
