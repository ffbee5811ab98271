"""Layout of multi-day and all-day events as bars across a week's day columns.

All-day events are always treated as spanning, including those covering a
single day, so they render as bars above the day cells rather than inside them.
"""
from datetime import date, datetime, time
from typing import List, Tuple

from processor.models import (
    CalendarEvent,
    PackedSpanningEvent,
    SpanningEvent,
    WeekLayout,
)


def _wall_clock(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


def is_spanning_event(event: CalendarEvent) -> bool:
    """
    Check if an event renders as a bar rather than inside a single day cell.

    Args:
        event: Event to classify

    Returns:
        True for all-day events and events ending on a later calendar day
    """
    if event.all_day:
        return True
    return event.end_datetime.date() != event.start_datetime.date()


def event_overlaps_day(event: CalendarEvent, day: date) -> bool:
    start = _wall_clock(event.start_datetime)
    end = _wall_clock(event.end_datetime)
    return start.date() <= day and end > datetime.combine(day, time.min)


def get_events_for_week(events: List[CalendarEvent], week_days: List[date]) -> List[CalendarEvent]:
    """Events overlapping any of the given days."""
    return [
        event for event in events
        if any(event_overlaps_day(event, day) for day in week_days)
    ]


def classify_week_events(events: List[CalendarEvent]) -> Tuple[List[CalendarEvent], List[CalendarEvent]]:
    """
    Split events into spanning and single-day events.

    Returns:
        Tuple of (spanning, single_day), each in input order
    """
    spanning = []
    single_day = []
    for event in events:
        if is_spanning_event(event):
            spanning.append(event)
        else:
            single_day.append(event)
    return spanning, single_day


def sort_spanning_events(events: List[CalendarEvent]) -> List[CalendarEvent]:
    """Order for packing: earliest start first, then longest first."""
    return sorted(
        events,
        key=lambda event: (
            event.start_datetime,
            -(event.end_datetime - event.start_datetime).total_seconds()
        )
    )


def calculate_spans(events: List[CalendarEvent], week_days: List[date]) -> List[SpanningEvent]:
    """
    Compute the starting column and column count of each event within a week.

    Events starting before the week start at column 0; events ending after
    the week extend to the last column. The end day itself is not covered,
    matching the exclusive end of all-day events.
    """
    spans = []
    for event in events:
        start_day = event.start_datetime.date()
        end_day = event.end_datetime.date()

        start_col = week_days.index(start_day) if start_day in week_days else 0
        end_col = week_days.index(end_day) if end_day in week_days else len(week_days)

        spans.append(
            SpanningEvent(event=event, start_col=start_col, span=max(1, end_col - start_col))
        )
    return spans


def _overlaps(a: SpanningEvent, b: SpanningEvent) -> bool:
    return a.start_col < b.start_col + b.span and b.start_col < a.start_col + a.span


def pack_spanning_events(spanning_events: List[SpanningEvent]) -> List[PackedSpanningEvent]:
    """
    Assign each event the lowest row where it overlaps nothing already placed.

    Events are processed in the order given, so callers should sort them
    first for a stable layout.

    Args:
        spanning_events: Events with computed column spans

    Returns:
        Packed events, grouped by row in ascending row order
    """
    rows: List[List[PackedSpanningEvent]] = []

    for spanning in spanning_events:
        row_index = 0
        while row_index < len(rows):
            if not any(_overlaps(spanning, placed) for placed in rows[row_index]):
                break
            row_index += 1

        if row_index == len(rows):
            rows.append([])

        rows[row_index].append(
            PackedSpanningEvent(
                event=spanning.event,
                start_col=spanning.start_col,
                span=spanning.span,
                row=row_index
            )
        )

    return [packed for row in rows for packed in row]


def get_spanning_row_count(packed_events: List[PackedSpanningEvent], day_index: int) -> int:
    """Number of bar rows occupying a day column."""
    max_row = -1
    for packed in packed_events:
        if packed.start_col <= day_index < packed.start_col + packed.span:
            max_row = max(max_row, packed.row)
    return max_row + 1


def layout_week(events: List[CalendarEvent], week_days: List[date]) -> WeekLayout:
    """
    Lay out one week of a grid view.

    Args:
        events: Visible events (any range)
        week_days: The week's dates, one per column

    Returns:
        WeekLayout with packed spanning bars, single-day events and
        the number of bar rows in each column
    """
    week_events = get_events_for_week(events, week_days)
    spanning, single_day = classify_week_events(week_events)
    packed = pack_spanning_events(calculate_spans(sort_spanning_events(spanning), week_days))
    return WeekLayout(
        spanning=packed,
        single_day=single_day,
        row_counts=[get_spanning_row_count(packed, i) for i in range(len(week_days))]
    )
