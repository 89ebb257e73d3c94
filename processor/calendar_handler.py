"""Events endpoint orchestration: validate, cache, acquire, parse, encode."""
import json
import logging
from typing import Any, Dict, Mapping, Optional

from processor.config import ServiceConfig
from processor.models import (
    CalendarMeta,
    CalendarResponseBody,
    ParseContext,
    RequestOptions,
)
from processor.request_options import parse_request
from processor.utils import pad, utc_now_iso
from scraper.calendar_parser import parse_calendar_page
from scraper.markup_fetcher import CalendarMarkupFetcher
from storage.response_cache import ResponseCache

logger = logging.getLogger(__name__)


def build_cache_key(options: RequestOptions) -> str:
    """Cache key determined by year, month, format and date only."""
    key = f"events?year={options.year}&month={pad(options.month)}&format={options.format}"
    if options.date:
        key += f"&date={options.date.iso}"
    return key


class CalendarRequestHandler:
    """Serves calendar events for one request at a time."""

    def __init__(
        self,
        config: ServiceConfig,
        fetcher: CalendarMarkupFetcher,
        cache: Optional[ResponseCache] = None
    ):
        self.config = config
        self.fetcher = fetcher
        self.cache = cache

    def handle(self, query_params: Optional[Mapping[str, str]]) -> Dict[str, Any]:
        """
        Produce the proxy response for an events request.

        Args:
            query_params: Query string parameters

        Returns:
            Response dict with statusCode, headers and body

        Raises:
            RequestError: If the parameters are invalid
            MarkupAcquisitionError: If no markup could be fetched
            ConfigurationError: If the upstream source is not configured
        """
        options = parse_request(query_params, self.config)
        cache_key = build_cache_key(options)
        use_cache = self.cache is not None and not options.bypass_cache

        if use_cache:
            cached = self.cache.match(cache_key)
            if cached:
                logger.info(f"Cache hit for {cache_key}")
                return cached
            logger.info(f"Cache miss for {cache_key}")

        self.config.require_source()
        acquired = self.fetcher.obtain_markup(options.year, options.month)

        if options.format == 'html':
            response = {
                'statusCode': 200,
                'headers': {
                    'Content-Type': 'text/html; charset=utf-8',
                    'Cache-Control': self._cache_control(),
                },
                'body': acquired.markup,
            }
        else:
            body = self._build_body(options, acquired.markup, acquired.source_url)
            response = {
                'statusCode': 200,
                'headers': {
                    'Content-Type': 'application/json; charset=utf-8',
                    'Cache-Control': self._cache_control(),
                    'Access-Control-Allow-Origin': '*',
                },
                'body': json.dumps(body.to_dict(), ensure_ascii=False),
            }

        if use_cache:
            self.cache.put(cache_key, response)
        return response

    def _build_body(self, options: RequestOptions, markup: str, source_url: str) -> CalendarResponseBody:
        parsed = parse_calendar_page(markup, ParseContext(
            year=options.year,
            month=options.month,
            calendar_id=options.calendar_id,
            source_url=source_url,
            timezone=options.timezone,
        ))

        events = parsed.events
        if options.date:
            events = [event for event in events if event.date == options.date.iso]
            logger.info(f"{len(events)} of {len(parsed.events)} events on {options.date.iso}")

        meta = CalendarMeta(
            source_url=source_url,
            calendar_id=options.calendar_id,
            timezone=options.timezone,
            year=parsed.year,
            month=parsed.month,
            date=options.date.iso if options.date else None,
            fetched_at=utc_now_iso(),
        )
        return CalendarResponseBody(meta=meta, events=events)

    def _cache_control(self) -> str:
        return f"public, max-age={self.config.cache_ttl_seconds}"
