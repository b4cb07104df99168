"""iCalendar serialization of busy intervals."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from icalendar import Calendar, Event


@dataclass
class BusyInterval:
    """One exported VEVENT. Times must be timezone-aware."""
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: Optional[str] = None


class ICalWriter:
    """Writes busy intervals as a VCALENDAR document."""

    PRODID = '-//Rental Calendar//EN'

    def __init__(
        self,
        calendar_name: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.calendar_name = calendar_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def write(self, intervals: Iterable[BusyInterval]) -> str:
        """
        Serialize intervals with UTC start and end times.

        Text values are escaped by icalendar (backslash, comma, semicolon,
        newline). Every event is stamped with the same DTSTAMP, the time the
        document was generated.

        Args:
            intervals: Busy intervals in output order

        Returns:
            Calendar document with CRLF line endings
        """
        stamp = self.clock().astimezone(timezone.utc).replace(microsecond=0)

        cal = Calendar()
        cal.add('prodid', self.PRODID)
        cal.add('version', '2.0')
        cal.add('calscale', 'GREGORIAN')
        cal.add('method', 'PUBLISH')
        if self.calendar_name:
            cal.add('x-wr-calname', self.calendar_name)

        for interval in intervals:
            event = Event()
            event.add('uid', interval.uid)
            event.add('dtstamp', stamp)
            event.add('summary', interval.summary)
            if interval.description:
                event.add('description', interval.description)
            event.add('dtstart', interval.start.astimezone(timezone.utc))
            event.add('dtend', interval.end.astimezone(timezone.utc))
            event.add('transp', 'OPAQUE')
            event.add('status', 'CONFIRMED')
            cal.add_component(event)

        return cal.to_ical().decode('utf-8')
