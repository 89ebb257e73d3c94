"""AWS Lambda handler for the calendar events feed."""
import json
import logging
import time
from typing import Dict, Any

from processor.calendar_handler import CalendarRequestHandler
from processor.config import ConfigurationError, ServiceConfig
from processor.request_options import RequestError
from processor.utils import utc_now_iso
from scraper.markup_fetcher import CalendarMarkupFetcher, MarkupAcquisitionError
from storage.response_cache import ResponseCache

# Attributes every LogRecord has; anything else came in through ``extra``.
RESERVED_LOG_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def json_response(status_code: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Build a proxy response with a JSON body."""
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json; charset=utf-8'},
        'body': json.dumps(payload, ensure_ascii=False)
    }


def text_response(status_code: int, text: str) -> Dict[str, Any]:
    """Build a proxy response with a plain-text body."""
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'text/plain; charset=utf-8'},
        'body': text
    }


def request_method(event: Dict[str, Any]) -> str:
    """HTTP method from a REST (v1) or HTTP API (v2) proxy event."""
    method = event.get('httpMethod')
    if not method:
        method = event.get('requestContext', {}).get('http', {}).get('method', 'GET')
    return method.upper()


def request_path(event: Dict[str, Any]) -> str:
    """Request path from a REST (v1) or HTTP API (v2) proxy event."""
    return event.get('rawPath') or event.get('path') or '/'


def build_calendar_handler(config: ServiceConfig) -> CalendarRequestHandler:
    """
    Wire the events handler from configuration.

    The upstream settings are checked only when markup is needed, so
    invalid requests and cache hits never depend on them.
    """
    fetcher = CalendarMarkupFetcher(
        base_url=config.source_base_url,
        user_agent=config.user_agent,
        page_id=config.source_page_id,
        timeout=config.timeout_seconds
    )
    cache = None
    if config.cache_table_name:
        cache = ResponseCache(
            table_name=config.cache_table_name,
            ttl_seconds=config.cache_ttl_seconds
        )
    return CalendarRequestHandler(config=config, fetcher=fetcher, cache=cache)


def handle_events(event: Dict[str, Any], config: ServiceConfig) -> Dict[str, Any]:
    """Serve /events, mapping failures to HTTP statuses."""
    logger = logging.getLogger(__name__)
    start_time = time.time()
    query_params = event.get('queryStringParameters') or {}

    try:
        handler = build_calendar_handler(config)
        response = handler.handle(query_params)
    except RequestError as e:
        logger.info(
            f"Rejected calendar request: {e.message}",
            extra={'status': e.status, 'query': query_params}
        )
        return json_response(e.status, {'error': e.message})
    except MarkupAcquisitionError as e:
        logger.error(
            f"Failed to acquire calendar markup: {e}",
            extra={'upstream_status': e.status},
            exc_info=True
        )
        return json_response(502, {'error': 'Failed to fetch calendar data'})
    except ConfigurationError as e:
        logger.error(str(e))
        return json_response(502, {'error': 'Failed to fetch calendar data'})
    except Exception as e:
        logger.error(
            f"Failed to process calendar request: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return json_response(502, {'error': 'Failed to fetch calendar data'})

    logger.info(
        "Calendar request served",
        extra={
            'status': response['statusCode'],
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return response


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the calendar events feed.

    Args:
        event: API Gateway proxy event (REST or HTTP API)
        context: Lambda context object

    Returns:
        Proxy response dict with statusCode, headers and body
    """
    config = ServiceConfig.from_env()
    setup_logging(config.log_level)

    if request_method(event) != 'GET':
        return text_response(405, 'Method not allowed')

    path = request_path(event)
    if path == '/healthz':
        return json_response(200, {'status': 'ok', 'timestamp': utc_now_iso()})
    if path == '/events':
        return handle_events(event, config)

    return text_response(404, 'Not found')
