"""Permissive iCalendar parser for partner booking feeds."""
import logging
import re
from datetime import date
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from processor.models import CalendarEvent

logger = logging.getLogger(__name__)

DATE_MARKER_PATTERN = re.compile(r'^(\d{4})(\d{2})(\d{2})(T\d{6}Z?)?$')

_TEXT_ESCAPES = {'n': '\n', 'N': '\n', '\\': '\\', ',': ',', ';': ';'}


class ParserState(Enum):
    OUTSIDE_EVENT = 'outside-event'
    INSIDE_EVENT = 'inside-event'


def parse_date_marker(marker: Optional[str]) -> Optional[date]:
    """
    Reduce a DTSTART/DTEND value to a calendar date.

    Accepts ``YYYYMMDD`` and ``YYYYMMDDTHHMMSS`` with an optional trailing
    ``Z``. Only the first eight digits are used; no timezone conversion
    happens here.

    Args:
        marker: Raw property value

    Returns:
        date, or None if the marker is not in a recognised shape
    """
    if not marker:
        return None

    match = DATE_MARKER_PATTERN.match(marker.strip())
    if not match:
        return None

    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def unescape_text(value: str) -> str:
    """Undo RFC 5545 TEXT escaping (backslash, comma, semicolon, newline)."""
    return re.sub(
        r'\\(.)',
        lambda m: _TEXT_ESCAPES.get(m.group(1), m.group(0)),
        value
    )


class ICalParser:
    """Parser turning raw calendar text into CalendarEvent objects."""

    BEGIN_EVENT = 'BEGIN:VEVENT'
    END_EVENT = 'END:VEVENT'

    def parse(self, content: Union[str, bytes]) -> Iterator[CalendarEvent]:
        """
        Parse calendar text into events.

        Lines that do not look like ``NAME[;PARAMS]:VALUE`` are skipped.
        Each call is an independent pass over ``content``.

        Args:
            content: Calendar document as text or UTF-8 bytes

        Yields:
            CalendarEvent for every VEVENT block, in document order
        """
        if isinstance(content, bytes):
            content = content.decode('utf-8', errors='replace')

        state = ParserState.OUTSIDE_EVENT
        properties: Dict[str, Tuple[str, Dict[str, str]]] = {}
        nested_depth = 0

        for line in self._logical_lines(content):
            line = line.strip()
            if not line:
                continue

            if state == ParserState.OUTSIDE_EVENT:
                if line.upper() == self.BEGIN_EVENT:
                    state = ParserState.INSIDE_EVENT
                    properties = {}
                    nested_depth = 0
                continue

            upper = line.upper()
            if upper == self.BEGIN_EVENT:
                # Previous VEVENT was never closed; drop it and start over
                partial_uid = properties.get('UID', ('', {}))[0]
                logger.warning(f"Discarding unterminated event {partial_uid!r}")
                properties = {}
                nested_depth = 0
                continue

            if upper == self.END_EVENT and nested_depth == 0:
                yield self._build_event(properties)
                state = ParserState.OUTSIDE_EVENT
                continue

            # Skip components nested in the event (VALARM and friends)
            if upper.startswith('BEGIN:'):
                nested_depth += 1
                continue
            if upper.startswith('END:'):
                nested_depth = max(0, nested_depth - 1)
                continue
            if nested_depth:
                continue

            parsed = self._parse_content_line(line)
            if parsed is None:
                continue

            name, params, value = parsed
            properties[name] = (value, params)

    def _logical_lines(self, content: str) -> List[str]:
        """Normalize line endings and unfold continuation lines."""
        content = content.replace('\r\n', '\n').replace('\r', '\n')
        content = re.sub(r'\n[ \t]', '', content)
        return content.split('\n')

    def _parse_content_line(
        self,
        line: str
    ) -> Optional[Tuple[str, Dict[str, str], str]]:
        """
        Split a content line into name, parameters and value.

        Args:
            line: Unfolded content line

        Returns:
            Tuple of (NAME, params, value) or None if the line is malformed
        """
        split_at = self._find_value_separator(line)
        if split_at is None:
            return None

        key, value = line[:split_at], line[split_at + 1:]
        key_parts = key.split(';')
        name = key_parts[0].strip().upper()
        if not name:
            return None

        params = {}
        for param in key_parts[1:]:
            if '=' not in param:
                continue
            p_key, p_value = param.split('=', 1)
            params[p_key.strip().upper()] = p_value.strip().strip('"')

        return name, params, value

    def _find_value_separator(self, line: str) -> Optional[int]:
        """Index of the first colon outside a quoted parameter value."""
        in_quotes = False
        for index, char in enumerate(line):
            if char == '"':
                in_quotes = not in_quotes
            elif char == ':' and not in_quotes:
                return index
        return None

    def _build_event(
        self,
        properties: Dict[str, Tuple[str, Dict[str, str]]]
    ) -> CalendarEvent:
        def value_of(name: str) -> Optional[str]:
            entry = properties.get(name)
            return entry[0] if entry else None

        start_params = properties.get('DTSTART', (None, {}))[1]
        uid = value_of('UID')

        return CalendarEvent(
            uid=uid.strip() if uid else None,
            summary=unescape_text(value_of('SUMMARY') or ''),
            description=unescape_text(value_of('DESCRIPTION') or ''),
            start=value_of('DTSTART'),
            end=value_of('DTEND'),
            is_all_day=start_params.get('VALUE', '').upper() == 'DATE'
        )
