"""Unit tests for CalendarMarkupFetcher."""
import pytest
import requests
import responses
from requests.exceptions import ConnectionError as RequestsConnectionError

from scraper.markup_fetcher import (
    CalendarMarkupFetcher,
    FetchOutcome,
    MarkupAcquisitionError,
    alternate_protocol_url,
    build_month_url,
    derive_content_api_url,
    select_response,
)

BASE_URL = "https://example.com/chieria/calendar/"
HTTPS_URL = "https://example.com/chieria/calendar/?simcal_month=2025-10"
HTTP_URL = "http://example.com/chieria/calendar/?simcal_month=2025-10"
HTTPS_API = "https://example.com/chieria/wp-json/wp/v2/pages/12"
HTTP_API = "http://example.com/chieria/wp-json/wp/v2/pages/12"

CALENDAR_HTML = '<div class="simcal-calendar"></div>'


@pytest.fixture
def fetcher():
    """Fetcher without a content-API fallback."""
    return CalendarMarkupFetcher(base_url=BASE_URL, user_agent='test/0.1')


@pytest.fixture
def fallback_fetcher():
    """Fetcher with a content-API fallback page id."""
    return CalendarMarkupFetcher(base_url=BASE_URL, user_agent='test/0.1', page_id='12')


class TestUrlHelpers:
    """Test cases for URL construction."""

    def test_build_month_url_zero_pads_month(self):
        assert build_month_url(BASE_URL, 2025, 3) == (
            "https://example.com/chieria/calendar/?simcal_month=2025-03"
        )

    def test_build_month_url_replaces_existing_selector(self):
        url = build_month_url(
            "https://example.com/calendar/?lang=ja&simcal_month=2024-01", 2025, 10
        )
        assert url == "https://example.com/calendar/?lang=ja&simcal_month=2025-10"

    def test_alternate_protocol_url(self):
        assert alternate_protocol_url(HTTPS_URL) == HTTP_URL
        assert alternate_protocol_url(HTTP_URL) == HTTPS_URL
        assert alternate_protocol_url("ftp://example.com/calendar") is None

    def test_derive_content_api_url_strips_last_segment(self):
        assert derive_content_api_url(HTTPS_URL, '12') == (
            "https://example.com/chieria/wp-json/wp/v2/pages/12"
            "?_fields=content.rendered%2Clink"
        )

    def test_derive_content_api_url_single_segment(self):
        assert derive_content_api_url("https://example.com/calendar/", '7') == (
            "https://example.com/wp-json/wp/v2/pages/7?_fields=content.rendered%2Clink"
        )

    def test_derive_content_api_url_root_path(self):
        assert derive_content_api_url("http://example.com", '7').startswith(
            "http://example.com/wp-json/wp/v2/pages/7?"
        )


class TestSelectResponse:
    """Test cases for reducing attempt outcomes."""

    def _response(self, status):
        response = requests.Response()
        response.status_code = status
        return response

    def test_first_success_wins(self):
        failed = self._response(500)
        ok = self._response(200)
        outcomes = [FetchOutcome(url='a', response=failed), FetchOutcome(url='b', response=ok)]
        assert select_response(outcomes) is ok

    def test_primary_failure_status_preferred_over_alternate(self):
        primary = self._response(503)
        alternate = self._response(404)
        outcomes = [
            FetchOutcome(url='a', response=primary),
            FetchOutcome(url='b', response=alternate),
        ]
        assert select_response(outcomes) is primary

    def test_alternate_response_used_when_primary_raised(self):
        alternate = self._response(404)
        outcomes = [
            FetchOutcome(url='a', error=RequestsConnectionError('down')),
            FetchOutcome(url='b', response=alternate),
        ]
        assert select_response(outcomes) is alternate

    def test_last_error_raised_when_no_response(self):
        second = RequestsConnectionError('second')
        outcomes = [
            FetchOutcome(url='a', error=RequestsConnectionError('first')),
            FetchOutcome(url='b', error=second),
        ]
        with pytest.raises(RequestsConnectionError) as exc_info:
            select_response(outcomes)
        assert exc_info.value is second


class TestProtocolFallback:
    """Test cases for the https/http fallback."""

    @responses.activate
    def test_primary_success_short_circuits(self, fetcher):
        """Test a 2xx primary response is used without a second request."""
        responses.add(responses.GET, HTTPS_URL, body=CALENDAR_HTML, status=200)

        result = fetcher.obtain_markup(2025, 10)

        assert result.markup == CALENDAR_HTML
        assert result.source_url == HTTPS_URL
        assert len(responses.calls) == 1
        request = responses.calls[0].request
        assert request.headers['User-Agent'] == 'test/0.1'
        assert request.headers['Accept'] == 'text/html,application/xhtml+xml'

    @responses.activate
    def test_network_error_falls_back_to_http(self, fetcher):
        """Test the http alternate is used after an https network error."""
        responses.add(responses.GET, HTTPS_URL, body=RequestsConnectionError('TLS failure'))
        responses.add(responses.GET, HTTP_URL, body=CALENDAR_HTML, status=200)

        result = fetcher.obtain_markup(2025, 10)

        assert result.markup == CALENDAR_HTML
        assert result.source_url == HTTP_URL
        assert len(responses.calls) == 2
        assert responses.calls[1].request.headers['User-Agent'] == 'test/0.1'

    @responses.activate
    def test_failure_status_falls_back_to_http(self, fetcher):
        """Test the http alternate is used after a non-2xx https response."""
        responses.add(responses.GET, HTTPS_URL, status=525)
        responses.add(responses.GET, HTTP_URL, body=CALENDAR_HTML, status=200)

        result = fetcher.obtain_markup(2025, 10)

        assert result.source_url == HTTP_URL

    @responses.activate
    def test_redirected_response_reports_final_url(self, fetcher):
        """Test the resolved URL follows redirects."""
        final_url = "https://example.com/chieria/calendar/2025/10/"
        responses.add(
            responses.GET, HTTPS_URL, status=301, headers={'Location': final_url}
        )
        responses.add(responses.GET, final_url, body=CALENDAR_HTML, status=200)

        result = fetcher.obtain_markup(2025, 10)

        assert result.source_url == final_url

    @responses.activate
    def test_non_success_primary_is_returned_when_alternate_raises(self, fetcher):
        """Test the primary response is kept when the alternate raises."""
        responses.add(responses.GET, HTTPS_URL, status=503)
        responses.add(responses.GET, HTTP_URL, body=RequestsConnectionError('refused'))

        response = fetcher.fetch_with_protocol_fallback(HTTPS_URL, {'User-Agent': 'test/0.1'})

        assert response.status_code == 503

    @responses.activate
    def test_both_attempts_raise_propagates_second_error(self, fetcher):
        """Test the alternate's error propagates when neither attempt responded."""
        responses.add(responses.GET, HTTPS_URL, body=RequestsConnectionError('first'))
        responses.add(responses.GET, HTTP_URL, body=RequestsConnectionError('second'))

        with pytest.raises(RequestsConnectionError, match='second'):
            fetcher.fetch_with_protocol_fallback(HTTPS_URL, {})

    def test_error_without_alternate_protocol_propagates(self, fetcher):
        """Test a non-http(s) URL gets a single attempt."""
        with pytest.raises(requests.RequestException):
            fetcher.fetch_with_protocol_fallback("ftp://example.com/calendar", {})


class TestAcquisition:
    """Test cases for obtain_markup and the content-API fallback."""

    @responses.activate
    def test_content_api_fallback(self, fallback_fetcher):
        """Test rendered content and link are used when the page is unreachable."""
        responses.add(responses.GET, HTTPS_URL, status=404)
        responses.add(responses.GET, HTTP_URL, status=404)
        responses.add(
            responses.GET,
            HTTPS_API,
            json={'content': {'rendered': '<html/>'}, 'link': 'https://x/y'},
            status=200
        )

        result = fallback_fetcher.obtain_markup(2025, 10)

        assert result.markup == '<html/>'
        assert result.source_url == 'https://x/y'
        api_request = responses.calls[2].request
        assert api_request.headers['Accept'] == 'application/json'
        assert '_fields=content.rendered%2Clink' in api_request.url

    @responses.activate
    def test_content_api_without_link_uses_calendar_url(self, fallback_fetcher):
        """Test the calendar URL is reported when the payload has no link."""
        responses.add(responses.GET, HTTPS_URL, status=500)
        responses.add(responses.GET, HTTP_URL, status=500)
        responses.add(
            responses.GET, HTTPS_API, json={'content': {'rendered': '<p>cal</p>'}}, status=200
        )

        result = fallback_fetcher.obtain_markup(2025, 10)

        assert result.source_url == HTTPS_URL

    @responses.activate
    def test_content_api_reached_after_network_errors(self, fallback_fetcher):
        """Test the content API is still tried when the page never responded."""
        responses.add(responses.GET, HTTPS_URL, body=RequestsConnectionError('down'))
        responses.add(responses.GET, HTTP_URL, body=RequestsConnectionError('down'))
        responses.add(responses.GET, HTTPS_API, body=RequestsConnectionError('down'))
        responses.add(
            responses.GET, HTTP_API, json={'content': {'rendered': '<p>cal</p>'}}, status=200
        )

        result = fallback_fetcher.obtain_markup(2025, 10)

        assert result.markup == '<p>cal</p>'

    @responses.activate
    def test_failure_without_fallback_carries_status(self, fetcher):
        """Test the acquisition error reports the upstream status."""
        responses.add(responses.GET, HTTPS_URL, status=503)
        responses.add(responses.GET, HTTP_URL, status=502)

        with pytest.raises(MarkupAcquisitionError) as exc_info:
            fetcher.obtain_markup(2025, 10)

        assert exc_info.value.status == 503

    @responses.activate
    def test_failure_after_network_errors_has_no_status(self, fetcher):
        """Test the acquisition error chains the network error."""
        responses.add(responses.GET, HTTPS_URL, body=RequestsConnectionError('down'))
        responses.add(responses.GET, HTTP_URL, body=RequestsConnectionError('down'))

        with pytest.raises(MarkupAcquisitionError) as exc_info:
            fetcher.obtain_markup(2025, 10)

        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, RequestsConnectionError)

    @responses.activate
    def test_content_api_missing_rendered_content_fails(self, fallback_fetcher):
        """Test a payload without rendered content fails the last branch."""
        responses.add(responses.GET, HTTPS_URL, status=404)
        responses.add(responses.GET, HTTP_URL, status=404)
        responses.add(responses.GET, HTTPS_API, json={'content': {'rendered': ''}}, status=200)

        with pytest.raises(MarkupAcquisitionError) as exc_info:
            fallback_fetcher.obtain_markup(2025, 10)

        assert exc_info.value.status == 404

    @responses.activate
    def test_page_status_survives_empty_content_api_payload(self, fallback_fetcher):
        """Test an empty 2xx API payload after an API failure keeps the page status."""
        responses.add(responses.GET, HTTPS_URL, status=404)
        responses.add(responses.GET, HTTP_URL, status=410)
        responses.add(responses.GET, HTTPS_API, status=500)
        responses.add(responses.GET, HTTP_API, json={'link': 'https://x/y'}, status=200)

        with pytest.raises(MarkupAcquisitionError) as exc_info:
            fallback_fetcher.obtain_markup(2025, 10)

        assert exc_info.value.status == 404
        assert len(responses.calls) == 4

    @responses.activate
    def test_content_api_invalid_json_fails(self, fallback_fetcher):
        """Test a non-JSON payload fails the last branch."""
        responses.add(responses.GET, HTTPS_URL, status=404)
        responses.add(responses.GET, HTTP_URL, status=404)
        responses.add(responses.GET, HTTPS_API, body='<html>oops</html>', status=200)

        with pytest.raises(MarkupAcquisitionError):
            fallback_fetcher.obtain_markup(2025, 10)

    @responses.activate
    def test_content_api_failure_status_reported(self, fallback_fetcher):
        """Test the last observed status comes from the content API."""
        responses.add(responses.GET, HTTPS_URL, status=404)
        responses.add(responses.GET, HTTP_URL, status=404)
        responses.add(responses.GET, HTTPS_API, status=401)
        responses.add(responses.GET, HTTP_API, status=403)

        with pytest.raises(MarkupAcquisitionError) as exc_info:
            fallback_fetcher.obtain_markup(2025, 10)

        assert exc_info.value.status == 401
        assert len(responses.calls) == 4

    @responses.activate
    def test_markup_decoded_as_utf8_without_charset(self, fetcher):
        """Test Japanese markup survives a Content-Type without charset."""
        html = '<span class="simcal-event-title">休校日</span>'
        responses.add(
            responses.GET,
            HTTPS_URL,
            body=html.encode('utf-8'),
            status=200,
            content_type='text/html'
        )

        result = fetcher.obtain_markup(2025, 10)

        assert result.markup == html
