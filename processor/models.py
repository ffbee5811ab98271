"""Data models for calendar aggregation and layout."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, List, TypeVar

T = TypeVar('T')

VIEW_KINDS = ('week', 'weeknext', '4week', 'month')


@dataclass(frozen=True)
class CalendarSourceConfig:
    """One configured remote iCalendar feed."""
    id: str
    name: str
    url: str
    colour: str
    enabled: bool
    hide_timed_events: bool = False


@dataclass(frozen=True)
class DisplayConfig:
    """Display settings shared with the client."""
    default_view: str = 'week'
    enabled_views: List[str] = field(default_factory=lambda: list(VIEW_KINDS))
    agenda_days: int = 2
    week_starts_on: int = 1
    time_format: str = '12h'
    grid_start_hour: int = 6
    grid_end_hour: int = 22


@dataclass(frozen=True)
class RefreshConfig:
    """Polling and server cache settings."""
    client_poll_interval_minutes: float = 5
    server_cache_ttl_minutes: float = 15


@dataclass(frozen=True)
class AppConfig:
    """Validated application configuration."""
    calendars: List[CalendarSourceConfig]
    display: DisplayConfig
    refresh: RefreshConfig
    timezone: str = 'Europe/London'


@dataclass(frozen=True)
class CalendarEvent:
    """Materialized event instance."""
    id: str
    title: str
    start: str
    end: str
    all_day: bool
    colour: str
    calendar_id: str
    calendar_name: str

    def to_dict(self) -> dict:
        """
        Convert to the JSON shape returned to clients.

        Returns:
            Dictionary with camelCase keys
        """
        return {
            'id': self.id,
            'title': self.title,
            'start': self.start,
            'end': self.end,
            'allDay': self.all_day,
            'colour': self.colour,
            'calendarId': self.calendar_id,
            'calendarName': self.calendar_name
        }

    @property
    def start_datetime(self) -> datetime:
        return datetime.fromisoformat(self.start)

    @property
    def end_datetime(self) -> datetime:
        return datetime.fromisoformat(self.end)


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with the time it was stored and its lifetime."""
    data: T
    fetched_at: float
    ttl_ms: int


@dataclass(frozen=True)
class SpanningEvent:
    """Event placed on a week's day columns."""
    event: CalendarEvent
    start_col: int
    span: int


@dataclass(frozen=True)
class PackedSpanningEvent(SpanningEvent):
    """Spanning event with its assigned row."""
    row: int = 0


@dataclass(frozen=True)
class ViewRange:
    """Date range covered by a calendar view."""
    start: datetime
    end: datetime


@dataclass
class FetchResult:
    """Result of a multi-source fetch."""
    events: List[CalendarEvent]
    errors: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class WeekLayout:
    """Spanning bars and single-day events for one visible week."""
    spanning: List[PackedSpanningEvent]
    single_day: List[CalendarEvent]
    row_counts: List[int]
