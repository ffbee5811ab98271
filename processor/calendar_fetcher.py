"""Aggregation of events across all configured calendar sources."""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional

from processor.event_expander import EventExpander
from processor.models import CalendarEvent, CalendarSourceConfig, FetchResult
from scraper.ical_feed import IcalFeedClient
from storage.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class CalendarFetcher:
    """
    Fetches, caches and expands events from every enabled calendar source.

    Sources are fetched concurrently. A source that fails contributes no
    events and never affects the others.
    """

    MAX_WORKERS = 8

    def __init__(
        self,
        feed_client: IcalFeedClient,
        cache: Optional[TTLCache[str]] = None,
        max_workers: int = MAX_WORKERS
    ):
        """
        Initialize the fetcher.

        Args:
            feed_client: Client used to download iCalendar documents
            cache: Cache of raw iCalendar text keyed by source id
            max_workers: Upper bound on concurrent source fetches
        """
        self.feed_client = feed_client
        self.cache = cache if cache is not None else TTLCache()
        self.max_workers = max_workers

    def fetch_events(
        self,
        sources: List[CalendarSourceConfig],
        range_start: datetime,
        range_end: datetime,
        cache_ttl_minutes: float,
        timezone_name: str
    ) -> FetchResult:
        """
        Fetch and expand events from all enabled sources.

        Args:
            sources: Configured calendar sources
            range_start: Start of the date range (inclusive)
            range_end: End of the date range (inclusive)
            cache_ttl_minutes: Lifetime of cached raw calendar data
            timezone_name: IANA zone for output timestamps

        Returns:
            FetchResult with events deduplicated by id, sorted by start,
            and per-source errors
        """
        enabled = [source for source in sources if source.enabled]
        ttl_ms = int(cache_ttl_minutes * 60 * 1000)
        expander = EventExpander(timezone_name)

        logger.info(
            f"Fetching events from {len(enabled)} calendars "
            f"between {range_start.isoformat()} and {range_end.isoformat()}"
        )

        result = FetchResult(events=[])
        if not enabled:
            return result

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(enabled))) as executor:
            futures = [
                (
                    source,
                    executor.submit(
                        self._fetch_source, source, expander,
                        range_start, range_end, ttl_ms
                    )
                )
                for source in enabled
            ]

            for source, future in futures:
                try:
                    result.events.extend(future.result())
                except Exception as e:
                    error_msg = f"{source.name}: {e}"
                    logger.error(
                        f"Failed to fetch calendar '{source.name}': {e}",
                        extra={'calendar_id': source.id, 'error_type': type(e).__name__}
                    )
                    result.errors.append(error_msg)
                    result.failed_sources.append(source.id)

        result.events = self.sort_events(self.dedupe_events(result.events))
        logger.info(
            f"Fetched {len(result.events)} events, "
            f"{len(result.failed_sources)} calendars failed"
        )
        return result

    def _fetch_source(
        self,
        source: CalendarSourceConfig,
        expander: EventExpander,
        range_start: datetime,
        range_end: datetime,
        ttl_ms: int
    ) -> List[CalendarEvent]:
        raw_data = self.get_raw_calendar(source, ttl_ms)
        return expander.expand(raw_data, source, range_start, range_end)

    def get_raw_calendar(self, source: CalendarSourceConfig, ttl_ms: int) -> str:
        """
        Return cached iCalendar text for a source, downloading it on a miss.

        Args:
            source: Calendar source
            ttl_ms: Lifetime for a newly cached document

        Returns:
            Raw iCalendar text

        Raises:
            requests.RequestException: If the download fails
        """
        raw_data = self.cache.get(source.id)
        if raw_data is not None:
            logger.debug(f"Cache hit for calendar '{source.name}'")
            return raw_data

        logger.debug(f"Cache miss for calendar '{source.name}'")
        raw_data = self.feed_client.fetch(source)
        self.cache.set(source.id, raw_data, ttl_ms)
        return raw_data

    @staticmethod
    def dedupe_events(events: List[CalendarEvent]) -> List[CalendarEvent]:
        """
        Drop events whose id was already seen, keeping the first.

        Args:
            events: Events in fold order

        Returns:
            New list without repeated ids
        """
        seen = set()
        unique = []
        for event in events:
            if event.id in seen:
                logger.debug(f"Skipping duplicate event id '{event.id}'")
                continue
            seen.add(event.id)
            unique.append(event)
        return unique

    @staticmethod
    def sort_events(events: List[CalendarEvent]) -> List[CalendarEvent]:
        """
        Sort events by start instant, keeping input order for ties.

        Args:
            events: Events to sort

        Returns:
            New sorted list
        """
        return sorted(events, key=lambda event: event.start_datetime)
