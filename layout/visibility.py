"""Selection of the events a viewer actually sees."""
from datetime import date, datetime
from typing import Collection, Iterable, List, Union

from layout.date_ranges import get_agenda_range
from processor.models import CalendarEvent, CalendarSourceConfig, ViewRange


def filter_visible_events(
    events: List[CalendarEvent],
    hidden_calendar_ids: Collection[str],
    calendars: Iterable[CalendarSourceConfig]
) -> List[CalendarEvent]:
    """
    Drop events from hidden calendars and timed events from calendars hiding them.

    Args:
        events: Full event list
        hidden_calendar_ids: Calendars the viewer has hidden
        calendars: Calendar settings, for the hide-timed-events flag

    Returns:
        Visible events in input order
    """
    hides_timed = {calendar.id for calendar in calendars if calendar.hide_timed_events}
    return [
        event for event in events
        if event.calendar_id not in hidden_calendar_ids
        and not (event.calendar_id in hides_timed and not event.all_day)
    ]


def events_in_range(events: List[CalendarEvent], view_range: ViewRange) -> List[CalendarEvent]:
    """Events overlapping a range, both ends inclusive."""
    return [
        event for event in events
        if event.end_datetime >= _comparable(view_range.start, event)
        and event.start_datetime <= _comparable(view_range.end, event)
    ]


def calendar_view_events(events: List[CalendarEvent], view_range: ViewRange) -> List[CalendarEvent]:
    return events_in_range(events, view_range)


def agenda_events(
    events: List[CalendarEvent],
    today: Union[date, datetime],
    agenda_days: int
) -> List[CalendarEvent]:
    return events_in_range(events, get_agenda_range(today, agenda_days))


def _comparable(bound: datetime, event: CalendarEvent) -> datetime:
    # Naive bounds are wall-clock times in the event's own zone
    if bound.tzinfo is None:
        return bound.replace(tzinfo=event.start_datetime.tzinfo)
    return bound
