"""Expansion of iCalendar data into concrete event instances."""
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar

from processor.models import CalendarEvent, CalendarSourceConfig

logger = logging.getLogger(__name__)

_UNTIL_PATTERN = re.compile(r'UNTIL=[^;]+', re.IGNORECASE)


class EventExpander:
    """Turns raw iCalendar text into CalendarEvent objects within a date range."""

    MAX_OCCURRENCES = 5000
    NO_TITLE = '(No title)'

    def __init__(self, timezone_name: str, max_occurrences: int = MAX_OCCURRENCES):
        """
        Initialize the expander.

        Args:
            timezone_name: IANA zone that output timestamps are expressed in
            max_occurrences: Hard cap on generated occurrences per series
        """
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self.max_occurrences = max_occurrences

    def expand(
        self,
        ical_text: str,
        source: CalendarSourceConfig,
        range_start: datetime,
        range_end: datetime
    ) -> List[CalendarEvent]:
        """
        Parse a calendar document and materialize its events within a range.

        Both range bounds are inclusive. A document that cannot be parsed
        yields no events; a single event that fails is skipped.

        Args:
            ical_text: Raw iCalendar document
            source: Calendar source the document came from
            range_start: Start of the range
            range_end: End of the range

        Returns:
            List of CalendarEvent objects in document order
        """
        range_start = self._localise(range_start)
        range_end = self._localise(range_end)

        try:
            calendar = Calendar.from_ical(ical_text)
            components = calendar.walk('VEVENT')
        except Exception as e:
            logger.error(f"Failed to parse calendar '{source.name}': {e}")
            return []

        overrides = self._collect_overrides(components, source)
        events = []

        for component in components:
            if 'RECURRENCE-ID' in component:
                continue

            try:
                if 'RRULE' in component or 'RDATE' in component:
                    events.extend(
                        self._expand_series(
                            component, source, range_start, range_end,
                            overrides.get(str(component.get('UID', '')), {})
                        )
                    )
                else:
                    event = self._single_event(component, source, range_start, range_end)
                    if event:
                        events.append(event)
            except Exception as e:
                logger.warning(
                    f"Failed to process event '{component.get('SUMMARY', '')}' "
                    f"in '{source.name}': {e}"
                )
                continue

        logger.info(f"Expanded {len(events)} events from '{source.name}'")
        return events

    def _single_event(
        self,
        component,
        source: CalendarSourceConfig,
        range_start: datetime,
        range_end: datetime
    ) -> Optional[CalendarEvent]:
        start, end = self._bounds(component)
        if end < range_start or start > range_end:
            return None

        return self._to_calendar_event(
            uid=str(component.get('UID', '')),
            title=component.get('SUMMARY'),
            start=start,
            end=end,
            all_day=self._is_date_only(component.get('DTSTART').dt),
            source=source
        )

    def _expand_series(
        self,
        component,
        source: CalendarSourceConfig,
        range_start: datetime,
        range_end: datetime,
        overrides: Dict[datetime, object]
    ) -> List[CalendarEvent]:
        """
        Expand a recurring event into its occurrences within the range.

        Occurrences are generated chronologically and generation stops at the
        first one starting after range_end, or after max_occurrences.
        """
        uid = str(component.get('UID', ''))
        dtstart = component.get('DTSTART').dt
        all_day = self._is_date_only(dtstart)
        duration = self._duration(component)

        try:
            rules = self._build_ruleset(component)
        except Exception as e:
            logger.warning(
                f"Failed to expand recurrence for '{component.get('SUMMARY', '')}' "
                f"in '{source.name}': {e}"
            )
            return []

        events = []
        for count, occurrence in enumerate(rules):
            if count >= self.max_occurrences:
                logger.warning(
                    f"Recurrence for '{component.get('SUMMARY', '')}' in "
                    f"'{source.name}' stopped after {self.max_occurrences} occurrences"
                )
                break

            occurrence_start = self._localise(occurrence)
            if occurrence_start > range_end:
                break

            override = overrides.get(occurrence_start)
            if override is not None:
                start, end = self._bounds(override, default_duration=duration)
                title = override.get('SUMMARY', component.get('SUMMARY'))
            else:
                start, end = occurrence_start, occurrence_start + duration
                title = component.get('SUMMARY')

            if end < range_start or start > range_end:
                continue

            events.append(
                self._to_calendar_event(
                    uid=uid,
                    title=title,
                    start=start,
                    end=end,
                    all_day=all_day,
                    source=source,
                    instance_key=self._instance_key(occurrence_start)
                )
            )

        return events

    def _build_ruleset(self, component) -> rruleset:
        dtstart = self._series_start(component.get('DTSTART').dt)
        rules = rruleset()
        rules.rdate(dtstart)

        for rrule_prop in self._as_list(component.get('RRULE')):
            rule_text = self._rule_text(rrule_prop, dtstart)
            rules.rrule(rrulestr(rule_text, dtstart=dtstart))

        for value in self._date_values(component.get('RDATE')):
            rules.rdate(self._align(value, dtstart))

        for value in self._date_values(component.get('EXDATE')):
            rules.exdate(self._align(value, dtstart))

        return rules

    def _rule_text(self, rrule_prop, dtstart: datetime) -> str:
        """
        Serialize an RRULE, aligning UNTIL with DTSTART.

        dateutil requires UNTIL to be timezone-aware exactly when DTSTART is.
        """
        rule_text = rrule_prop.to_ical().decode()
        until_values = rrule_prop.get('UNTIL')
        if not until_values:
            return rule_text

        until = until_values[0]
        if dtstart.tzinfo is not None:
            if self._is_date_only(until):
                until = datetime.combine(until, time(23, 59, 59), tzinfo=dtstart.tzinfo)
            elif until.tzinfo is None:
                until = until.replace(tzinfo=dtstart.tzinfo)
            formatted = until.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
        else:
            if self._is_date_only(until):
                until = datetime.combine(until, time(23, 59, 59))
            elif until.tzinfo is not None:
                until = until.astimezone(self.tz).replace(tzinfo=None)
            formatted = until.strftime('%Y%m%dT%H%M%S')

        return _UNTIL_PATTERN.sub(f'UNTIL={formatted}', rule_text)

    def _collect_overrides(self, components, source: CalendarSourceConfig) -> Dict[str, Dict[datetime, object]]:
        """Index modified occurrences by UID and original occurrence start."""
        overrides: Dict[str, Dict[datetime, object]] = {}
        for component in components:
            if 'RECURRENCE-ID' not in component:
                continue
            try:
                recurrence_id = self._localise(component.get('RECURRENCE-ID').dt)
            except Exception as e:
                logger.warning(f"Ignoring invalid RECURRENCE-ID in '{source.name}': {e}")
                continue
            uid = str(component.get('UID', ''))
            overrides.setdefault(uid, {})[recurrence_id] = component
        return overrides

    def _bounds(self, component, default_duration: Optional[timedelta] = None) -> Tuple[datetime, datetime]:
        start = self._localise(component.get('DTSTART').dt)
        if 'DTEND' in component:
            end = self._localise(component.get('DTEND').dt)
        elif 'DURATION' in component:
            end = start + component.get('DURATION').dt
        elif default_duration is not None:
            end = start + default_duration
        else:
            end = start + self._duration(component)
        return start, end

    def _duration(self, component) -> timedelta:
        """Length of an event from DTEND, DURATION, or the RFC 5545 default."""
        dtstart = component.get('DTSTART').dt
        if 'DTEND' in component:
            return self._localise(component.get('DTEND').dt) - self._localise(dtstart)
        if 'DURATION' in component:
            return component.get('DURATION').dt
        if self._is_date_only(dtstart):
            return timedelta(days=1)
        return timedelta(0)

    def _to_calendar_event(
        self,
        uid: str,
        title,
        start: datetime,
        end: datetime,
        all_day: bool,
        source: CalendarSourceConfig,
        instance_key: Optional[str] = None
    ) -> CalendarEvent:
        return CalendarEvent(
            id=f"{uid}_{instance_key}" if instance_key else uid,
            title=str(title) if title else self.NO_TITLE,
            start=start.astimezone(self.tz).isoformat(timespec='seconds'),
            end=end.astimezone(self.tz).isoformat(timespec='seconds'),
            all_day=all_day,
            colour=source.colour,
            calendar_id=source.id,
            calendar_name=source.name
        )

    def _localise(self, value) -> datetime:
        """Express a date, floating or zoned value as an aware datetime in the display zone."""
        if self._is_date_only(value):
            return datetime.combine(value, time.min, tzinfo=self.tz)
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def _series_start(self, value) -> datetime:
        if self._is_date_only(value):
            return datetime.combine(value, time.min)
        return value

    def _align(self, value, dtstart: datetime) -> datetime:
        """Convert an RDATE/EXDATE value to the same kind of datetime as dtstart."""
        if self._is_date_only(value):
            return datetime.combine(value, dtstart.timetz())
        if dtstart.tzinfo is not None:
            if value.tzinfo is None:
                return value.replace(tzinfo=dtstart.tzinfo)
            return value
        if value.tzinfo is not None:
            return value.astimezone(self.tz).replace(tzinfo=None)
        return value

    def _date_values(self, prop) -> List:
        values = []
        for date_list in self._as_list(prop):
            for item in date_list.dts:
                value = item.dt
                # PERIOD values carry (start, end); only the start matters here
                if isinstance(value, tuple):
                    value = value[0]
                values.append(value)
        return values

    @staticmethod
    def _instance_key(occurrence_start: datetime) -> str:
        return occurrence_start.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

    @staticmethod
    def _is_date_only(value) -> bool:
        return isinstance(value, date) and not isinstance(value, datetime)

    @staticmethod
    def _as_list(prop) -> List:
        if prop is None:
            return []
        if isinstance(prop, list):
            return prop
        return [prop]
