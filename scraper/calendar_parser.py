"""Parser turning Simple Calendar month-grid markup into calendar events."""
import logging
import re
import sys
from datetime import date, datetime, tzinfo
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from processor.models import CalendarEvent, EventSource, ParseContext, ParsedCalendar, RawText
from processor.utils import parse_leading_int, resolve_timezone

logger = logging.getLogger(__name__)

FULLWIDTH_COLON = '：'
TIME_FRAGMENT_REGEX = re.compile(r'\b([01]?[0-9]|2[0-3]):[0-5][0-9]\b', re.ASCII)
MIDNIGHT_START_REGEX = re.compile(r'T00:00(:[0-9]{2})?([+-][0-9]{2}:[0-9]{2}|Z)$')
BOUNDARY_END_REGEX = re.compile(r'T(00:00|23:59)(:[0-9]{2})?([+-][0-9]{2}:[0-9]{2}|Z)$')
NON_DIGIT_REGEX = re.compile(r'[^0-9]')

SECONDS_PER_DAY = 24 * 60 * 60

# A rule returns True/False for a definitive all-day verdict, None to defer.
AllDayRule = Callable[[str, Optional[str], Optional[str]], Optional[bool]]


def title_has_time(title: str, start_iso: Optional[str], end_iso: Optional[str]) -> Optional[bool]:
    """An explicit time of day in the title means the event is timed."""
    normalized = title.replace(FULLWIDTH_COLON, ':')
    if TIME_FRAGMENT_REGEX.search(normalized):
        return False
    return None


def start_has_time(title: str, start_iso: Optional[str], end_iso: Optional[str]) -> Optional[bool]:
    """A start timestamp away from midnight means the event is timed."""
    if start_iso and not MIDNIGHT_START_REGEX.search(start_iso):
        return False
    return None


def end_has_time(title: str, start_iso: Optional[str], end_iso: Optional[str]) -> Optional[bool]:
    """An end timestamp other than midnight or 23:59 means the event is timed."""
    if end_iso and not BOUNDARY_END_REGEX.search(end_iso):
        return False
    return None


ALL_DAY_RULES: List[AllDayRule] = [title_has_time, start_has_time, end_has_time]


def estimate_all_day(title: str, start_iso: Optional[str], end_iso: Optional[str]) -> bool:
    """
    Infer whether an event lasts all day.

    Rules in ALL_DAY_RULES are evaluated in order and the first verdict
    wins; with no verdict the event is all-day.
    """
    for rule in ALL_DAY_RULES:
        verdict = rule(title, start_iso, end_iso)
        if verdict is not None:
            return verdict
    return True


def _parse_iso(value: str, default_tz: tzinfo) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def is_multi_day(start_iso: Optional[str], end_iso: Optional[str], default_tz: tzinfo) -> bool:
    """
    True when end is at least one day after start.

    Timestamps without an offset are read in ``default_tz``. Missing or
    unparseable timestamps give False.
    """
    if not start_iso or not end_iso:
        return False
    start = _parse_iso(start_iso, default_tz)
    end = _parse_iso(end_iso, default_tz)
    if start is None or end is None:
        return False
    diff_days = (end - start).total_seconds() / SECONDS_PER_DAY
    return diff_days >= 1 - sys.float_info.epsilon


def calc_weekday(year: int, month: int, day: int) -> int:
    """Day of week with 0 for Sunday through 6 for Saturday."""
    return date(year, month, day).isoweekday() % 7


def _text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    return node.get_text().strip()


def _attr(node: Optional[Tag], name: str) -> Optional[str]:
    if node is None:
        return None
    value = node.get(name)
    if isinstance(value, list):
        value = ' '.join(value)
    return value


def _normalize_iso(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    trimmed = value.strip()
    return trimmed or None


def _detect_year_month(calendar: Tag, context: ParseContext) -> Tuple[int, int]:
    year = parse_leading_int(_text(calendar.select_one('.simcal-current-year')))
    month_text = _text(calendar.select_one('.simcal-current-month'))
    month = None
    if month_text:
        month = parse_leading_int(NON_DIGIT_REGEX.sub('', month_text))

    if year is None or not 1 <= year <= 9999:
        year = context.year
    if month is None or not 1 <= month <= 12:
        month = context.month
    return year, month


def _find_detail_span(details: Optional[Tag], itemprop: str, class_name: str) -> Optional[Tag]:
    if details is None:
        return None
    span = details.select_one(f'[itemprop="{itemprop}"]')
    if span is None:
        span = details.select_one(f'.{class_name}')
    return span


def _parse_event_node(
    node: Tag,
    day: int,
    event_date: date,
    context: ParseContext,
    default_tz: tzinfo
) -> Optional[CalendarEvent]:
    title = _text(node.select_one('.simcal-event-title'))
    if not title:
        return None

    details = node.select_one('.simcal-event-details')
    start_span = _find_detail_span(details, 'startDate', 'simcal-event-start-date')
    end_span = _find_detail_span(details, 'endDate', 'simcal-event-end-date')

    start_iso = _normalize_iso(_attr(start_span, 'content'))
    end_iso = _normalize_iso(_attr(end_span, 'content'))

    end_epoch = _attr(end_span, 'data-event-end')
    if end_epoch is None:
        end_epoch = _attr(end_span, 'data-event-start')

    return CalendarEvent(
        title=title,
        day=day,
        date=event_date.isoformat(),
        start=start_iso,
        end=end_iso,
        start_timestamp=parse_leading_int(_attr(start_span, 'data-event-start')),
        end_timestamp=parse_leading_int(end_epoch),
        is_all_day=estimate_all_day(title, start_iso, end_iso),
        is_multi_day=is_multi_day(start_iso, end_iso, default_tz),
        weekday=calc_weekday(event_date.year, event_date.month, event_date.day),
        raw=RawText(start_text=_text(start_span), end_text=_text(end_span)),
        source=EventSource(calendar_id=context.calendar_id, href=context.source_url),
    )


def parse_calendar_page(html_content: str, context: ParseContext) -> ParsedCalendar:
    """
    Parse a month grid into events, keeping the effective year/month.

    The year/month printed in the calendar header take precedence over the
    requested ones, since the upstream may serve an adjacent month.
    Malformed or missing structure yields fewer events, never an exception.

    Args:
        html_content: Calendar page markup
        context: Requested year/month and provenance

    Returns:
        ParsedCalendar with events in document order
    """
    soup = BeautifulSoup(html_content, 'html.parser')

    calendar = soup.select_one('.simcal-calendar')
    if calendar is None:
        logger.info("No calendar container found in markup")
        return ParsedCalendar(year=context.year, month=context.month, events=[])

    year, month = _detect_year_month(calendar, context)
    if (year, month) != (context.year, context.month):
        logger.info(
            f"Calendar reports {year}-{month:02d}, requested "
            f"{context.year}-{context.month:02d}"
        )

    default_tz = resolve_timezone(context.timezone)
    events = []

    for day_node in calendar.select('.simcal-day'):
        if 'simcal-day-void' in (day_node.get('class') or []):
            continue

        day = parse_leading_int(_text(day_node.select_one('.simcal-day-number')))
        if day is None or not 1 <= day <= 31:
            continue
        try:
            event_date = date(year, month, day)
        except (ValueError, OverflowError):
            logger.warning(f"Skipping day {day}: not a valid date in {year}-{month:02d}")
            continue

        for event_node in day_node.select('.simcal-event'):
            event = _parse_event_node(event_node, day, event_date, context, default_tz)
            if event:
                events.append(event)

    logger.info(f"Parsed {len(events)} events for {year}-{month:02d}")
    return ParsedCalendar(year=year, month=month, events=events)


def parse_calendar(html_content: str, context: ParseContext) -> List[CalendarEvent]:
    """Parse a month grid into events in document order."""
    return parse_calendar_page(html_content, context).events
