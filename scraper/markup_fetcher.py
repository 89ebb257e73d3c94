"""Markup acquisition for a WordPress Simple Calendar page."""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from processor.models import AcquiredMarkup
from processor.utils import pad

logger = logging.getLogger(__name__)

MONTH_PARAM = 'simcal_month'
CONTENT_API_FIELDS = 'content.rendered,link'
HTML_ACCEPT = 'text/html,application/xhtml+xml'
JSON_ACCEPT = 'application/json'

ALTERNATE_SCHEMES = {'https': 'http', 'http': 'https'}


class MarkupAcquisitionError(Exception):
    """Raised when no configured source yielded calendar markup."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of one HTTP attempt.

    Exactly one of ``response`` and ``error`` is set. A response is a
    success only when its status is 2xx.
    """
    url: str
    response: Optional[requests.Response] = None
    error: Optional[requests.RequestException] = None

    @property
    def succeeded(self) -> bool:
        return self.response is not None and is_success(self.response.status_code)


@dataclass(frozen=True)
class BranchResult:
    """Result of one acquisition branch: markup, or the status that defeated it."""
    markup: Optional[AcquiredMarkup] = None
    status: Optional[int] = None


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def build_month_url(base_url: str, year: int, month: int) -> str:
    """
    Set the month selector query parameter on the calendar URL.

    Args:
        base_url: Calendar page URL, possibly carrying its own query
        year: Target year
        month: Target month (1-12)

    Returns:
        URL with ``simcal_month=YYYY-MM``
    """
    parts = urlsplit(base_url)
    query = [
        (key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != MONTH_PARAM
    ]
    query.append((MONTH_PARAM, f"{year}-{pad(month)}"))
    return urlunsplit(parts._replace(query=urlencode(query)))


def alternate_protocol_url(url: str) -> Optional[str]:
    """Same URL over the opposite scheme, or None for non-http(s) URLs."""
    parts = urlsplit(url)
    scheme = ALTERNATE_SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        return None
    return urlunsplit(parts._replace(scheme=scheme))


def derive_content_api_url(calendar_url: str, page_id: str) -> str:
    """
    Build the WordPress REST endpoint for the calendar page.

    The last path segment of the calendar URL is dropped and
    ``/wp-json/wp/v2/pages/<id>`` appended; the calendar query is discarded.

    Args:
        calendar_url: URL of the calendar page
        page_id: WordPress page identifier

    Returns:
        Content API URL restricted to the rendered content and link fields
    """
    parts = urlsplit(calendar_url)
    segments = [segment for segment in parts.path.split('/') if segment]
    base_path = '/' + '/'.join(segments[:-1]) if len(segments) > 1 else ''
    path = f"{base_path}/wp-json/wp/v2/pages/{page_id}"
    query = urlencode({'_fields': CONTENT_API_FIELDS})
    return urlunsplit((parts.scheme, parts.netloc, path, query, ''))


def select_response(outcomes: List[FetchOutcome]) -> requests.Response:
    """
    Reduce ordered attempt outcomes to a single response.

    The first 2xx response wins. Otherwise the earliest response received
    is returned even though it is not a success. When no attempt produced
    a response, the error of the last attempt is raised.

    Args:
        outcomes: Attempt outcomes in the order they were made

    Returns:
        Selected response

    Raises:
        requests.RequestException: If every attempt raised
    """
    for outcome in outcomes:
        if outcome.succeeded:
            return outcome.response
    for outcome in outcomes:
        if outcome.response is not None:
            return outcome.response
    raise outcomes[-1].error


class CalendarMarkupFetcher:
    """Fetches calendar markup with protocol and content-API fallbacks."""

    def __init__(
        self,
        base_url: str,
        user_agent: str,
        page_id: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the fetcher.

        Args:
            base_url: Calendar page URL
            user_agent: User-Agent header sent upstream
            page_id: WordPress page id enabling the content-API fallback
            timeout: Per-request timeout in seconds, None for no limit
        """
        self.base_url = base_url
        self.user_agent = user_agent
        self.page_id = page_id
        self.timeout = timeout

    def obtain_markup(self, year: int, month: int) -> AcquiredMarkup:
        """
        Fetch the calendar markup for a month.

        Branches are tried strictly in order: the calendar page, then the
        content API when a page id is configured.

        Args:
            year: Target year
            month: Target month (1-12)

        Returns:
            AcquiredMarkup with the markup and the URL it came from

        Raises:
            MarkupAcquisitionError: If every branch failed
        """
        calendar_url = build_month_url(self.base_url, year, month)
        branches: List[Callable[[str], BranchResult]] = [self._from_calendar_page]
        if self.page_id:
            branches.append(self._from_content_api)

        last_status = None
        last_error = None
        for branch in branches:
            try:
                result = branch(calendar_url)
            except requests.RequestException as e:
                logger.warning(f"Acquisition branch {branch.__name__} raised: {e}")
                last_error = e
                continue
            if result.markup is not None:
                return result.markup
            if result.status is not None:
                last_status = result.status

        logger.error(f"Failed to fetch calendar markup for {calendar_url}, status={last_status}")
        raise MarkupAcquisitionError(
            f"Failed to fetch calendar markup. status={last_status}",
            status=last_status
        ) from last_error

    def fetch_with_protocol_fallback(
        self,
        url: str,
        headers: Dict[str, str]
    ) -> requests.Response:
        """
        GET a URL, retrying once over the opposite scheme.

        Attempts run one at a time and stop at the first 2xx. A non-2xx
        primary response is returned as-is when the alternate does not
        succeed.

        Args:
            url: URL to fetch
            headers: Request headers, reused for the alternate attempt

        Returns:
            Selected response, possibly non-2xx

        Raises:
            requests.RequestException: If no attempt produced a response
        """
        candidates = [url]
        alternate = alternate_protocol_url(url)
        if alternate:
            candidates.append(alternate)

        outcomes = []
        for candidate in candidates:
            outcome = self._attempt(candidate, headers)
            outcomes.append(outcome)
            if outcome.succeeded:
                break
        return select_response(outcomes)

    def _attempt(self, url: str, headers: Dict[str, str]) -> FetchOutcome:
        logger.info(f"Fetching {url}")
        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Request to {url} failed: {e}")
            return FetchOutcome(url=url, error=e)
        if not is_success(response.status_code):
            logger.warning(f"Request to {url} returned status {response.status_code}")
        return FetchOutcome(url=url, response=response)

    def _from_calendar_page(self, calendar_url: str) -> BranchResult:
        response = self.fetch_with_protocol_fallback(
            calendar_url,
            {'User-Agent': self.user_agent, 'Accept': HTML_ACCEPT}
        )
        if not is_success(response.status_code):
            return BranchResult(status=response.status_code)

        if 'charset' not in response.headers.get('Content-Type', '').lower():
            response.encoding = 'utf-8'
        source_url = response.url or calendar_url
        return BranchResult(markup=AcquiredMarkup(markup=response.text, source_url=source_url))

    def _from_content_api(self, calendar_url: str) -> BranchResult:
        api_url = derive_content_api_url(calendar_url, self.page_id)
        logger.info(f"Falling back to content API {api_url}")
        response = self.fetch_with_protocol_fallback(
            api_url,
            {'User-Agent': self.user_agent, 'Accept': JSON_ACCEPT}
        )
        if not is_success(response.status_code):
            return BranchResult(status=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Content API returned invalid JSON: {e}")
            return BranchResult()

        content = payload.get('content') if isinstance(payload, dict) else None
        rendered = content.get('rendered') if isinstance(content, dict) else None
        if not isinstance(rendered, str) or not rendered:
            logger.warning("Content API payload has no rendered content")
            return BranchResult()

        link = payload.get('link')
        source_url = link if isinstance(link, str) and link else calendar_url
        return BranchResult(markup=AcquiredMarkup(markup=rendered, source_url=source_url))
