"""Turnover buffers around exported reservations."""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Sequence

from processor.models import Reservation


@dataclass
class BufferedReservation:
    """Reservation with the buffer days it may claim on each side."""
    reservation: Reservation
    pre_days: int
    post_days: int

    @property
    def padded_start(self) -> date:
        return self.reservation.start_date - timedelta(days=self.pre_days)

    @property
    def padded_end(self) -> date:
        return self.reservation.end_date + timedelta(days=self.post_days)


class BufferAdjuster:
    """
    Assigns pre/post buffer days so padded reservations never overlap.

    Reservations are handled in start-date order. A reservation's trailing
    buffer is limited by the raw start of the next reservation and is
    committed before the next reservation's leading buffer, which may only
    use whatever gap is left.
    """

    def adjust(
        self,
        reservations: Sequence[Reservation],
        max_pre_days: int,
        max_post_days: int
    ) -> List[BufferedReservation]:
        """
        Compute buffers for a property's reservations.

        Args:
            reservations: Reservations in any order
            max_pre_days: Upper bound for buffer days before check-in
            max_post_days: Upper bound for buffer days after checkout

        Returns:
            BufferedReservation list in chronological order
        """
        max_pre_days = max(0, max_pre_days)
        max_post_days = max(0, max_post_days)

        ordered = sorted(reservations, key=lambda r: r.start_date)
        buffered = []
        committed_end: Optional[date] = None

        for i, reservation in enumerate(ordered):
            if committed_end is None:
                pre_days = max_pre_days
            else:
                gap = (reservation.start_date - committed_end).days
                pre_days = min(max_pre_days, max(0, gap))

            if i + 1 < len(ordered):
                gap = (ordered[i + 1].start_date - reservation.end_date).days
                post_days = min(max_post_days, max(0, gap))
            else:
                post_days = max_post_days

            entry = BufferedReservation(reservation, pre_days, post_days)
            buffered.append(entry)

            if committed_end is None or entry.padded_end > committed_end:
                committed_end = entry.padded_end

        return buffered
