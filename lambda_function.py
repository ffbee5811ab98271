"""AWS Lambda handler serving aggregated calendar events."""
import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from config_loader import get_config, to_client_config
from layout.date_ranges import build_fetch_range, get_agenda_range, get_view_range
from processor.calendar_fetcher import CalendarFetcher
from processor.models import VIEW_KINDS, AppConfig
from scraper.ical_feed import IcalFeedClient
from storage.ttl_cache import TTLCache

# Raw iCalendar text per calendar id, shared across warm invocations
RAW_CACHE: TTLCache[str] = TTLCache()


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def current_time(tz: ZoneInfo) -> datetime:
    return datetime.now(tz)


def resolve_view(requested: Optional[str], config: AppConfig) -> str:
    """Requested view, or the configured default when missing or unknown."""
    if requested in VIEW_KINDS:
        return requested
    if requested:
        logging.getLogger(__name__).warning(
            f"Unknown view '{requested}', using '{config.display.default_view}'"
        )
    return config.display.default_view


def resolve_reference_date(requested: Optional[str], tz: ZoneInfo, now: datetime) -> datetime:
    """
    Parse the ISO-8601 date parameter into the display timezone.

    Naive values are taken as wall-clock times in the display timezone.
    Missing or unparsable values fall back to now.
    """
    if not requested:
        return now
    try:
        parsed = datetime.fromisoformat(requested)
    except ValueError:
        logging.getLogger(__name__).warning(f"Invalid date '{requested}', using current time")
        return now
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Return events for a calendar view together with the client configuration.

    Args:
        event: API Gateway proxy event with optional view and date query parameters
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body of events and config
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '20'))
    max_retries = int(os.environ.get('MAX_RETRIES', '2'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    params = (event or {}).get('queryStringParameters') or {}

    try:
        config = get_config()
    except Exception as e:
        logger.error(
            f"Failed to load configuration: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Invalid configuration',
                'error': str(e),
                'error_type': type(e).__name__
            })
        }

    try:
        tz = ZoneInfo(config.timezone)
        now = current_time(tz)
        view = resolve_view(params.get('view'), config)
        reference = resolve_reference_date(params.get('date'), tz, now)

        view_range = get_view_range(view, reference, config.display.week_starts_on)
        agenda_range = get_agenda_range(now, config.display.agenda_days)
        fetch_range = build_fetch_range(view_range, agenda_range)

        logger.info(
            "Fetching calendar events",
            extra={
                'view': view,
                'range_start': fetch_range.start.isoformat(),
                'range_end': fetch_range.end.isoformat()
            }
        )

        fetcher = CalendarFetcher(
            IcalFeedClient(timeout=timeout_seconds, max_retries=max_retries),
            cache=RAW_CACHE
        )
        result = fetcher.fetch_events(
            config.calendars,
            fetch_range.start,
            fetch_range.end,
            config.refresh.server_cache_ttl_minutes,
            config.timezone
        )

        duration = time.time() - start_time
        logger.info(
            "Calendar events fetched",
            extra={
                'duration_seconds': round(duration, 2),
                'events': len(result.events),
                'failed_calendars': result.failed_sources
            }
        )

        return {
            'statusCode': 200,
            'headers': {'Content-Type': 'application/json'},
            'body': json.dumps({
                'events': [e.to_dict() for e in result.events],
                'config': to_client_config(config)
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Request failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Failed to load calendar events',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
