"""Builds the iCal export published to booking partners."""
import hashlib
import logging
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from export.buffer_adjuster import BufferAdjuster, BufferedReservation
from export.ical_writer import BusyInterval, ICalWriter
from processor.config import TimeWindows
from processor.models import (
    EndTime,
    MaintenanceBlock,
    Property,
    Reservation,
    StartTime,
)

logger = logging.getLogger(__name__)

MAINTENANCE_UID_PREFIX = 'blocked-'
EXPORT_FILENAME = 'calendar.ics'


def maintenance_uid(maintenance_id: int) -> str:
    """Opaque, stable UID for a maintenance block."""
    digest = hashlib.sha256(f"maintenance-{maintenance_id}".encode('utf-8')).hexdigest()
    return f"{MAINTENANCE_UID_PREFIX}{digest[:32]}"


class ExportGenerator:
    """
    Export of internal reservations and maintenance blocks as busy periods.

    Reservations are padded with turnover buffers from BufferAdjuster.
    Maintenance blocks are shaped like a reservation (check-in time on the
    first day to checkout time on the last) so partners that ignore all-day
    events still block the dates.
    """

    def __init__(
        self,
        time_windows: TimeWindows,
        adjuster: Optional[BufferAdjuster] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.time_windows = time_windows
        self.adjuster = adjuster or BufferAdjuster()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def generate(
        self,
        prop: Property,
        reservations: Sequence[Reservation],
        maintenance_blocks: Sequence[MaintenanceBlock]
    ) -> str:
        """
        Generate the export document for one property.

        Args:
            prop: Property being exported
            reservations: Internal reservations to publish
            maintenance_blocks: Maintenance windows to publish

        Returns:
            iCal document text
        """
        tz = ZoneInfo(prop.timezone or 'UTC')
        intervals = self._reservation_intervals(reservations, tz)
        intervals.extend(self._maintenance_intervals(maintenance_blocks, tz))

        logger.info(
            f"Exporting {len(reservations)} reservations and "
            f"{len(maintenance_blocks)} maintenance blocks for property {prop.property_id}"
        )
        return ICalWriter(calendar_name=prop.name, clock=self.clock).write(intervals)

    def _reservation_intervals(
        self,
        reservations: Sequence[Reservation],
        tz: ZoneInfo
    ) -> List[BusyInterval]:
        windows = self.time_windows
        buffered = self.adjuster.adjust(
            reservations,
            windows.pre_reservation_days,
            windows.post_reservation_days
        )
        self._trim_clock_overlaps(buffered, tz)

        return [
            BusyInterval(
                uid=entry.reservation.export_uid,
                summary=entry.reservation.name,
                description=entry.reservation.description,
                start=self._padded_start(entry, tz),
                end=self._padded_end(entry, tz)
            )
            for entry in buffered
        ]

    def _trim_clock_overlaps(self, buffered: List[BufferedReservation], tz: ZoneInfo) -> None:
        """
        Give back buffer days where padded stays meet on the same date.

        Day-level padding lets a checkout and a later check-in share a date,
        which overlaps when checkout is later than check-in (late checkout or
        early check-in). The later stay's leading buffer is trimmed first,
        then the earlier stay's trailing buffer.
        """
        for i, current in enumerate(buffered):
            for previous in buffered[:i]:
                while self._padded_end(previous, tz) > self._padded_start(current, tz):
                    if current.pre_days > 0:
                        current.pre_days -= 1
                    elif previous.post_days > 0:
                        previous.post_days -= 1
                    else:
                        # Raw stays already overlap; padding cannot fix that
                        break

    def _padded_start(self, entry: BufferedReservation, tz: ZoneInfo) -> datetime:
        if entry.reservation.start_time == StartTime.EARLY:
            wall_clock = self.time_windows.early_start
        else:
            wall_clock = self.time_windows.standard_start
        return self._local_instant(entry.padded_start, wall_clock, tz)

    def _padded_end(self, entry: BufferedReservation, tz: ZoneInfo) -> datetime:
        if entry.reservation.end_time == EndTime.LATE:
            wall_clock = self.time_windows.late_end
        else:
            wall_clock = self.time_windows.standard_end
        return self._local_instant(entry.padded_end, wall_clock, tz)

    def _maintenance_intervals(
        self,
        blocks: Sequence[MaintenanceBlock],
        tz: ZoneInfo
    ) -> List[BusyInterval]:
        return [
            BusyInterval(
                uid=maintenance_uid(block.maintenance_id),
                summary=block.description,
                description=block.maintenance_type,
                start=self._local_instant(block.start_date, self.time_windows.standard_start, tz),
                end=self._local_instant(block.end_date, self.time_windows.standard_end, tz)
            )
            for block in blocks
        ]

    def _local_instant(self, day: date, wall_clock: str, tz: ZoneInfo) -> datetime:
        # Wall-clock time in the property timezone
        return datetime.combine(day, time.fromisoformat(wall_clock), tzinfo=tz)


def content_disposition() -> str:
    return f'attachment; filename="{EXPORT_FILENAME}"'
