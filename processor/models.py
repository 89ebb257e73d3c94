"""Data models for calendar acquisition and parsing."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ParseContext:
    """Request-scoped hints handed to the calendar parser."""
    year: int
    month: int
    calendar_id: str
    source_url: str
    timezone: str


@dataclass(frozen=True)
class RawText:
    """Human-readable start/end text as it appeared in the markup."""
    start_text: Optional[str] = None
    end_text: Optional[str] = None


@dataclass(frozen=True)
class EventSource:
    """Provenance shared by every event of one response."""
    calendar_id: str
    href: str


@dataclass(frozen=True)
class CalendarEvent:
    """Normalized event extracted from one event node."""
    title: str
    day: int
    date: str
    start: Optional[str]
    end: Optional[str]
    start_timestamp: Optional[int]
    end_timestamp: Optional[int]
    is_all_day: bool
    is_multi_day: bool
    weekday: int
    raw: RawText
    source: EventSource

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'day': self.day,
            'date': self.date,
            'start': self.start,
            'end': self.end,
            'startTimestamp': self.start_timestamp,
            'endTimestamp': self.end_timestamp,
            'isAllDay': self.is_all_day,
            'isMultiDay': self.is_multi_day,
            'weekday': self.weekday,
            'raw': {
                'startText': self.raw.start_text,
                'endText': self.raw.end_text,
            },
            'source': {
                'calendarId': self.source.calendar_id,
                'href': self.source.href,
            },
        }


@dataclass(frozen=True)
class ParsedCalendar:
    """Parser result: effective year/month plus the events in document order."""
    year: int
    month: int
    events: List[CalendarEvent] = field(default_factory=list)


@dataclass(frozen=True)
class CalendarMeta:
    """Metadata attached to a JSON calendar response."""
    source_url: str
    calendar_id: str
    timezone: str
    year: int
    month: int
    date: Optional[str]
    fetched_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sourceUrl': self.source_url,
            'calendarId': self.calendar_id,
            'timezone': self.timezone,
            'year': self.year,
            'month': self.month,
            'date': self.date,
            'fetchedAt': self.fetched_at,
        }


@dataclass(frozen=True)
class CalendarResponseBody:
    """JSON body returned by the events endpoint."""
    meta: CalendarMeta
    events: List[CalendarEvent]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'meta': self.meta.to_dict(),
            'events': [event.to_dict() for event in self.events],
        }


@dataclass(frozen=True)
class AcquiredMarkup:
    """Calendar markup together with the URL it was actually served from."""
    markup: str
    source_url: str


@dataclass(frozen=True)
class DateSelection:
    """Single day requested through the ``date`` query parameter."""
    iso: str
    day: int


@dataclass(frozen=True)
class RequestOptions:
    """Validated request parameters."""
    year: int
    month: int
    calendar_id: str
    timezone: str
    format: str
    bypass_cache: bool
    date: Optional[DateSelection] = None
