"""Unit tests for EventExpander."""
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from processor.event_expander import EventExpander
from processor.models import CalendarSourceConfig

UTC = ZoneInfo('UTC')


def make_calendar(*events: str) -> str:
    """Wrap VEVENT bodies in a VCALENDAR document."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//EN"]
    for event in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in event.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


WEEKLY_STANDUP = """
    UID:standup
    DTSTART:20240304T090000Z
    DTEND:20240304T093000Z
    RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR
    SUMMARY:Standup
"""


@pytest.fixture
def source():
    return CalendarSourceConfig(
        id='work',
        name='Work',
        url='https://calendar.example.com/work.ics',
        colour='#ff0000',
        enabled=True
    )


@pytest.fixture
def expander():
    return EventExpander('UTC')


def week_of_march_4():
    return (
        datetime(2024, 3, 4, tzinfo=UTC),
        datetime(2024, 3, 10, 23, 59, 59, 999999, tzinfo=UTC)
    )


class TestSingleEvents:
    """Test cases for non-recurring events."""

    def test_timed_event_in_range(self, expander, source):
        ics = make_calendar("""
            UID:dentist
            DTSTART:20240305T140000Z
            DTEND:20240305T160000Z
            SUMMARY:Dentist
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert len(events) == 1
        event = events[0]
        assert event.id == 'dentist'
        assert event.title == 'Dentist'
        assert event.start == '2024-03-05T14:00:00+00:00'
        assert event.end == '2024-03-05T16:00:00+00:00'
        assert event.all_day is False
        assert event.colour == '#ff0000'
        assert event.calendar_id == 'work'
        assert event.calendar_name == 'Work'

    def test_event_outside_range_excluded(self, expander, source):
        ics = make_calendar("""
            UID:later
            DTSTART:20240320T140000Z
            DTEND:20240320T150000Z
            SUMMARY:Later
        """)

        assert expander.expand(ics, source, *week_of_march_4()) == []

    def test_overlap_is_inclusive_at_both_ends(self, expander, source):
        """Test events touching the range bounds are included."""
        ics = make_calendar(
            """
            UID:ends-at-start
            DTSTART:20240303T220000Z
            DTEND:20240304T000000Z
            SUMMARY:Ends at range start
            """,
            """
            UID:starts-at-end
            DTSTART:20240310T235959Z
            DTEND:20240311T010000Z
            SUMMARY:Starts at range end
            """,
            """
            UID:before
            DTSTART:20240303T200000Z
            DTEND:20240303T230000Z
            SUMMARY:Before
            """
        )
        range_start = datetime(2024, 3, 4, tzinfo=UTC)
        range_end = datetime(2024, 3, 10, 23, 59, 59, tzinfo=UTC)

        events = expander.expand(ics, source, range_start, range_end)

        assert [e.id for e in events] == ['ends-at-start', 'starts-at-end']

    def test_event_spanning_whole_range_included(self, expander, source):
        ics = make_calendar("""
            UID:holiday
            DTSTART;VALUE=DATE:20240301
            DTEND;VALUE=DATE:20240315
            SUMMARY:Holiday
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert len(events) == 1
        assert events[0].all_day is True

    def test_all_day_event_keeps_exclusive_end(self, expander, source):
        """Test a single-day all-day event ends at midnight the next day."""
        ics = make_calendar("""
            UID:birthday
            DTSTART;VALUE=DATE:20240306
            DTEND;VALUE=DATE:20240307
            SUMMARY:Birthday
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert events[0].all_day is True
        assert events[0].start == '2024-03-06T00:00:00+00:00'
        assert events[0].end == '2024-03-07T00:00:00+00:00'

    def test_all_day_event_without_end_lasts_one_day(self, expander, source):
        ics = make_calendar("""
            UID:bin-day
            DTSTART;VALUE=DATE:20240306
            SUMMARY:Bin day
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert events[0].end == '2024-03-07T00:00:00+00:00'

    def test_duration_used_when_no_end(self, expander, source):
        ics = make_calendar("""
            UID:call
            DTSTART:20240305T100000Z
            DURATION:PT45M
            SUMMARY:Call
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert events[0].end == '2024-03-05T10:45:00+00:00'

    def test_missing_summary_uses_placeholder(self, expander, source):
        ics = make_calendar("""
            UID:untitled
            DTSTART:20240305T100000Z
            DTEND:20240305T110000Z
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert events[0].title == '(No title)'

    def test_floating_time_interpreted_in_display_timezone(self, source):
        expander = EventExpander('America/New_York')
        ics = make_calendar("""
            UID:floating
            DTSTART:20240305T100000
            DTEND:20240305T110000
            SUMMARY:Floating
        """)
        tz = ZoneInfo('America/New_York')

        events = expander.expand(
            ics, source,
            datetime(2024, 3, 4, tzinfo=tz),
            datetime(2024, 3, 10, 23, 59, tzinfo=tz)
        )

        assert events[0].start == '2024-03-05T10:00:00-05:00'

    def test_utc_event_converted_to_display_timezone(self, source):
        """Test instants are placed on the display zone's wall clock."""
        expander = EventExpander('Europe/London')
        ics = make_calendar("""
            UID:summer
            DTSTART:20240701T120000Z
            DTEND:20240701T130000Z
            SUMMARY:Summer lunch
        """)
        tz = ZoneInfo('Europe/London')

        events = expander.expand(
            ics, source,
            datetime(2024, 7, 1, tzinfo=tz),
            datetime(2024, 7, 7, 23, 59, tzinfo=tz)
        )

        assert events[0].start == '2024-07-01T13:00:00+01:00'
        assert events[0].end == '2024-07-01T14:00:00+01:00'


class TestRecurringEvents:
    """Test cases for recurrence expansion."""

    def test_weekly_expansion_within_range(self, expander, source):
        ics = make_calendar(WEEKLY_STANDUP)

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.start for e in events] == [
            '2024-03-04T09:00:00+00:00',
            '2024-03-06T09:00:00+00:00',
            '2024-03-08T09:00:00+00:00',
        ]
        assert all(e.end[11:16] == '09:30' for e in events)

    def test_occurrence_ids_are_unique(self, expander, source):
        ics = make_calendar(WEEKLY_STANDUP)

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.id for e in events] == [
            'standup_2024-03-04T09:00:00Z',
            'standup_2024-03-06T09:00:00Z',
            'standup_2024-03-08T09:00:00Z',
        ]
        assert len({e.id for e in events}) == len(events)

    def test_occurrences_before_range_skipped(self, expander, source):
        ics = make_calendar("""
            UID:daily
            DTSTART:20240101T080000Z
            DTEND:20240101T083000Z
            RRULE:FREQ=DAILY
            SUMMARY:Daily
        """)

        events = expander.expand(
            ics, source,
            datetime(2024, 3, 5, tzinfo=UTC),
            datetime(2024, 3, 6, 23, 59, 59, tzinfo=UTC)
        )

        assert [e.start for e in events] == [
            '2024-03-05T08:00:00+00:00',
            '2024-03-06T08:00:00+00:00',
        ]

    def test_count_limited_rule(self, expander, source):
        ics = make_calendar("""
            UID:course
            DTSTART:20240304T180000Z
            DTEND:20240304T190000Z
            RRULE:FREQ=DAILY;COUNT=2
            SUMMARY:Course
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert len(events) == 2

    def test_until_as_date_on_timed_series(self, expander, source):
        """Test a date-only UNTIL on a zoned series includes that day."""
        ics = make_calendar("""
            UID:sprint
            DTSTART:20240304T090000Z
            DTEND:20240304T100000Z
            RRULE:FREQ=DAILY;UNTIL=20240306
            SUMMARY:Sprint
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.start[:10] for e in events] == ['2024-03-04', '2024-03-05', '2024-03-06']

    def test_all_day_recurring_event(self, expander, source):
        ics = make_calendar("""
            UID:recycling
            DTSTART;VALUE=DATE:20240305
            DTEND;VALUE=DATE:20240306
            RRULE:FREQ=WEEKLY;UNTIL=20240401T000000Z
            SUMMARY:Recycling
        """)

        events = expander.expand(
            ics, source,
            datetime(2024, 3, 1, tzinfo=UTC),
            datetime(2024, 3, 31, 23, 59, tzinfo=UTC)
        )

        assert [e.start[:10] for e in events] == [
            '2024-03-05', '2024-03-12', '2024-03-19', '2024-03-26'
        ]
        assert all(e.all_day for e in events)
        assert events[0].end == '2024-03-06T00:00:00+00:00'

    def test_exdate_removes_occurrence(self, expander, source):
        ics = make_calendar("""
            UID:standup
            DTSTART:20240304T090000Z
            DTEND:20240304T093000Z
            RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR
            EXDATE:20240306T090000Z
            SUMMARY:Standup
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.start[:10] for e in events] == ['2024-03-04', '2024-03-08']

    def test_rdate_adds_occurrence(self, expander, source):
        ics = make_calendar("""
            UID:standup
            DTSTART:20240304T090000Z
            DTEND:20240304T093000Z
            RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR
            RDATE:20240309T090000Z
            SUMMARY:Standup
        """)

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.start[:10] for e in events] == [
            '2024-03-04', '2024-03-06', '2024-03-08', '2024-03-09'
        ]

    def test_override_replaces_occurrence(self, expander, source):
        """Test a modified occurrence is folded into the series, not duplicated."""
        ics = make_calendar(
            WEEKLY_STANDUP,
            """
            UID:standup
            RECURRENCE-ID:20240306T090000Z
            DTSTART:20240306T150000Z
            DTEND:20240306T153000Z
            SUMMARY:Standup (moved)
            """
        )

        events = expander.expand(ics, source, *week_of_march_4())

        assert len(events) == 3
        moved = events[1]
        assert moved.id == 'standup_2024-03-06T09:00:00Z'
        assert moved.title == 'Standup (moved)'
        assert moved.start == '2024-03-06T15:00:00+00:00'
        assert moved.end == '2024-03-06T15:30:00+00:00'

    def test_orphan_override_not_emitted(self, expander, source):
        ics = make_calendar("""
            UID:gone
            RECURRENCE-ID:20240306T090000Z
            DTSTART:20240306T150000Z
            DTEND:20240306T153000Z
            SUMMARY:Orphan
        """)

        assert expander.expand(ics, source, *week_of_march_4()) == []

    def test_wall_clock_kept_across_dst(self, source):
        """Test a 09:00 London series stays at 09:00 after clocks go forward."""
        expander = EventExpander('Europe/London')
        tz = ZoneInfo('Europe/London')
        ics = make_calendar("""
            UID:gym
            DTSTART;TZID=Europe/London:20240325T090000
            DTEND;TZID=Europe/London:20240325T100000
            RRULE:FREQ=WEEKLY
            SUMMARY:Gym
        """)

        events = expander.expand(
            ics, source,
            datetime(2024, 3, 25, tzinfo=tz),
            datetime(2024, 4, 7, 23, 59, tzinfo=tz)
        )

        assert [e.start for e in events] == [
            '2024-03-25T09:00:00+00:00',
            '2024-04-01T09:00:00+01:00',
        ]

    def test_unbounded_rule_stops_at_safety_limit(self, source):
        """Test expansion of an endless rule terminates at the cap."""
        expander = EventExpander('UTC', max_occurrences=10)
        ics = make_calendar("""
            UID:forever
            DTSTART:20240301T000000Z
            DTEND:20240301T000100Z
            RRULE:FREQ=MINUTELY
            SUMMARY:Forever
        """)

        events = expander.expand(
            ics, source,
            datetime(2024, 1, 1, tzinfo=UTC),
            datetime(2099, 1, 1, tzinfo=UTC)
        )

        assert len(events) == 10

    def test_old_series_exhausts_cap_before_range(self, source):
        expander = EventExpander('UTC', max_occurrences=10)
        ics = make_calendar("""
            UID:ancient
            DTSTART:20000101T090000Z
            DTEND:20000101T100000Z
            RRULE:FREQ=DAILY
            SUMMARY:Ancient
        """)

        assert expander.expand(ics, source, *week_of_march_4()) == []

    def test_default_cap(self):
        assert EventExpander('UTC').max_occurrences == 5000


class TestFailureIsolation:
    """Test cases for parse error handling."""

    def test_unparsable_document_yields_no_events(self, expander, source):
        assert expander.expand("this is not a calendar", source, *week_of_march_4()) == []

    def test_broken_event_skipped_siblings_kept(self, expander, source):
        ics = make_calendar(
            """
            UID:no-start
            SUMMARY:Missing start
            """,
            """
            UID:dentist
            DTSTART:20240305T140000Z
            DTEND:20240305T160000Z
            SUMMARY:Dentist
            """
        )

        events = expander.expand(ics, source, *week_of_march_4())

        assert [e.id for e in events] == ['dentist']

    def test_naive_range_bounds_use_display_timezone(self, expander, source):
        ics = make_calendar(WEEKLY_STANDUP)

        events = expander.expand(
            ics, source,
            datetime(2024, 3, 4),
            datetime(2024, 3, 4, 23, 59)
        )

        assert len(events) == 1
