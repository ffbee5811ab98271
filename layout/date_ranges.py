"""Date range arithmetic for calendar views."""
from datetime import date, datetime, time, timedelta
from typing import List, Union

from dateutil.relativedelta import relativedelta

from processor.models import VIEW_KINDS, ViewRange

DAYS_IN_WEEK = 7

DateLike = Union[date, datetime]


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def start_of_day(value: DateLike) -> datetime:
    return _as_datetime(value).replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: DateLike) -> datetime:
    return _as_datetime(value).replace(hour=23, minute=59, second=59, microsecond=999999)


def start_of_week(value: DateLike, week_starts_on: int) -> datetime:
    """
    Return midnight on the first day of the week containing value.

    Args:
        value: Reference date
        week_starts_on: 0 for Sunday, 1 for Monday
    """
    day = start_of_day(value)
    # Python weekdays run Monday=0..Sunday=6; shift to Sunday=0..Saturday=6
    sunday_based = (day.weekday() + 1) % DAYS_IN_WEEK
    return day - timedelta(days=(sunday_based - week_starts_on) % DAYS_IN_WEEK)


def end_of_week(value: DateLike, week_starts_on: int) -> datetime:
    return end_of_day(start_of_week(value, week_starts_on) + timedelta(days=DAYS_IN_WEEK - 1))


def start_of_month(value: DateLike) -> datetime:
    return start_of_day(value).replace(day=1)


def end_of_month(value: DateLike) -> datetime:
    return end_of_day(start_of_month(value) + relativedelta(months=1) - timedelta(days=1))


def get_view_range(view: str, reference: DateLike, week_starts_on: int) -> ViewRange:
    """
    Compute the unpadded date range shown by a view.

    Args:
        view: One of week, weeknext, 4week, month
        reference: Date the view is centred on
        week_starts_on: 0 for Sunday, 1 for Monday

    Returns:
        ViewRange from midnight of the first day to the end of the last day

    Raises:
        ValueError: If the view is unknown
    """
    if view == 'week':
        return ViewRange(
            start=start_of_week(reference, week_starts_on),
            end=end_of_week(reference, week_starts_on)
        )

    if view == 'weeknext':
        start = start_of_week(reference, week_starts_on)
        return ViewRange(
            start=start,
            end=end_of_week(start + timedelta(days=DAYS_IN_WEEK), week_starts_on)
        )

    if view == '4week':
        start = start_of_week(reference, week_starts_on)
        return ViewRange(
            start=start,
            end=end_of_week(start + timedelta(days=3 * DAYS_IN_WEEK), week_starts_on)
        )

    if view == 'month':
        return ViewRange(start=start_of_month(reference), end=end_of_month(reference))

    raise ValueError(f"Unknown view '{view}', expected one of {', '.join(VIEW_KINDS)}")


def get_agenda_range(today: DateLike, agenda_days: int) -> ViewRange:
    """Range covered by the agenda panel: today plus agenda_days - 1 following days."""
    start = start_of_day(today)
    return ViewRange(start=start, end=end_of_day(start + timedelta(days=agenda_days - 1)))


def build_fetch_range(view_range: ViewRange, agenda_range: ViewRange) -> ViewRange:
    """Smallest range covering both the view and the agenda panel."""
    return ViewRange(
        start=min(view_range.start, agenda_range.start),
        end=max(view_range.end, agenda_range.end)
    )


def get_week_days(reference: DateLike, week_starts_on: int) -> List[date]:
    start = start_of_week(reference, week_starts_on).date()
    return [start + timedelta(days=i) for i in range(DAYS_IN_WEEK)]


def get_month_grid_days(reference: DateLike, week_starts_on: int) -> List[date]:
    """All day cells of a month grid, padded with adjacent months' days to whole weeks."""
    grid_start = start_of_week(start_of_month(reference), week_starts_on).date()
    grid_end = end_of_week(end_of_month(reference), week_starts_on).date()

    days = []
    current = grid_start
    while current <= grid_end:
        days.append(current)
        current += timedelta(days=1)
    return days


def get_grid_days(view: str, reference: DateLike, week_starts_on: int) -> List[date]:
    """
    Day cells rendered by a grid view, always whole weeks.

    Unlike get_view_range, the month grid includes padding days.
    """
    if view == 'month':
        return get_month_grid_days(reference, week_starts_on)

    view_range = get_view_range(view, reference, week_starts_on)
    first = view_range.start.date()
    count = (view_range.end.date() - first).days + 1
    return [first + timedelta(days=i) for i in range(count)]


def split_into_weeks(days: List[date]) -> List[List[date]]:
    return [days[i:i + DAYS_IN_WEEK] for i in range(0, len(days), DAYS_IN_WEEK)]


def navigate(view: str, reference: DateLike, step: int) -> DateLike:
    """
    Move the reference date forward (step > 0) or back (step < 0) by whole periods.

    week and weeknext move by one week, 4week by four weeks, month by one month.
    """
    if view in ('week', 'weeknext'):
        return reference + timedelta(days=DAYS_IN_WEEK * step)
    if view == '4week':
        return reference + timedelta(days=4 * DAYS_IN_WEEK * step)
    if view == 'month':
        return reference + relativedelta(months=step)
    raise ValueError(f"Unknown view '{view}'")


def _day_month(value: datetime) -> str:
    return f"{value.day} {value:%b}"


def format_period_label(view: str, reference: DateLike, week_starts_on: int) -> str:
    """Human readable title for the period a view shows, e.g. '3 Mar – 9 Mar 2025'."""
    if view == 'month':
        return f"{_as_datetime(reference):%B %Y}"

    view_range = get_view_range(view, reference, week_starts_on)
    return (
        f"{_day_month(view_range.start)} – "
        f"{_day_month(view_range.end)} {view_range.end.year}"
    )
