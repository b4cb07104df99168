"""Reconciliation of partner feeds against stored reservations."""
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Set, Tuple

from feeds.feed_fetcher import FeedFetcher
from feeds.ical_parser import ICalParser, parse_date_marker
from processor.errors import ReconcileError, StoreError
from processor.models import (
    CalendarEvent,
    Reservation,
    ReservationSource,
    ReservationStatus,
    SyncStats,
)
from storage.link_store import ImportLinkStore
from storage.reservation_store import ReservationStore

logger = logging.getLogger(__name__)

ADDED = 'added'
UPDATED = 'updated'
SKIPPED = 'skipped'


class SyncReconciler:
    """
    Base class for partner feed synchronization.

    Subclasses set ``name`` and may override ``is_placeholder`` and
    ``extract_label`` for partner-specific feed conventions.
    """

    name = ''
    MAX_NAME_LENGTH = 200

    def __init__(
        self,
        reservation_store: ReservationStore,
        link_store: ImportLinkStore,
        fetcher: FeedFetcher,
        parser: Optional[ICalParser] = None,
        retention_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.reservation_store = reservation_store
        self.link_store = link_store
        self.fetcher = fetcher
        self.parser = parser or ICalParser()
        self.retention_days = retention_days
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def get_name(self) -> str:
        return self.name

    def sync(self, property_id: int, feed_url: str) -> SyncStats:
        """
        Fetch a partner feed and reconcile it with stored reservations.

        Args:
            property_id: Property the feed belongs to
            feed_url: Partner iCal URL

        Returns:
            SyncStats for this pass

        Raises:
            FetchError: If the feed cannot be retrieved
            StoreError: If the post-pass cannot be written
        """
        stats = SyncStats()

        try:
            content = self.fetcher.fetch(feed_url)

            existing = self.reservation_store.list_external(property_id, self.name)
            seen: Set[str] = set()

            for event in self.parser.parse(content):
                try:
                    result = self._process_event(property_id, event, existing, seen)
                except ReconcileError as e:
                    stats.errors += 1
                    logger.warning(
                        f"Event not persisted: {e}",
                        extra={'property_id': property_id, 'partner': self.name}
                    )
                    continue

                if result == ADDED:
                    stats.added += 1
                elif result == UPDATED:
                    stats.updated += 1
                else:
                    stats.skipped += 1

            pruned = self.reservation_store.prune_missing(
                property_id,
                self.name,
                seen,
                self.retention_days,
                self.clock().date()
            )
            stats.deleted = pruned.deleted
            stats.orphaned = pruned.orphaned

            self._record_status(property_id, 'success')

        except Exception as e:
            self._record_status(property_id, f"error: {e}")
            raise

        logger.info(
            f"Sync complete for property {property_id}/{self.name}: "
            f"{stats.added} added, {stats.updated} updated, {stats.skipped} skipped, "
            f"{stats.deleted} deleted, {stats.orphaned} orphaned, {stats.errors} errors"
        )
        return stats

    def is_placeholder(self, event: CalendarEvent) -> bool:
        """True for feed entries that block dates but are not bookings."""
        return False

    def extract_label(self, event: CalendarEvent) -> Tuple[str, Optional[str]]:
        """
        Derive the reservation name and description from a feed event.

        Returns:
            Tuple of (name, description)
        """
        return event.summary.strip()[:self.MAX_NAME_LENGTH], None

    def _process_event(
        self,
        property_id: int,
        event: CalendarEvent,
        existing: Dict[str, Reservation],
        seen: Set[str]
    ) -> str:
        """
        Apply one feed event to the store.

        Returns:
            'added', 'updated' or 'skipped'

        Raises:
            ReconcileError: If the store rejects the write
        """
        if not event.uid or not event.start:
            return SKIPPED

        if self.is_placeholder(event):
            return SKIPPED

        start_date = parse_date_marker(event.start)
        if start_date is None:
            logger.warning(f"Unrecognised DTSTART for event {event.uid}: {event.start}")
            return SKIPPED
        end_date = parse_date_marker(event.end) if event.end else None
        if end_date is None:
            end_date = start_date

        name, description = self.extract_label(event)
        seen.add(event.uid)

        try:
            reservation = existing.get(event.uid)
            if reservation is None:
                existing[event.uid] = self.reservation_store.insert(
                    self._new_reservation(property_id, event.uid, name, description,
                                          start_date, end_date)
                )
                return ADDED

            if self._differs(reservation, start_date, end_date, name):
                self.reservation_store.update_details(
                    reservation, start_date, end_date, name, description
                )
                return UPDATED

            self.reservation_store.touch(reservation)
            return SKIPPED

        except StoreError as e:
            raise ReconcileError(event.uid, e) from e

    def _new_reservation(
        self,
        property_id: int,
        uid: str,
        name: str,
        description: Optional[str],
        start_date: date,
        end_date: date
    ) -> Reservation:
        return Reservation(
            reservation_id=None,
            property_id=property_id,
            source=ReservationSource.SYNC_PARTNER,
            status=ReservationStatus.CONFIRMED,
            name=name,
            description=description,
            start_date=start_date,
            end_date=end_date,
            sync_partner_name=self.name,
            external_id=uid
        )

    def _differs(
        self,
        reservation: Reservation,
        start_date: date,
        end_date: date,
        name: str
    ) -> bool:
        return (
            reservation.start_date != start_date or
            reservation.end_date != end_date or
            reservation.name != name
        )

    def _record_status(self, property_id: int, status: str) -> None:
        try:
            self.link_store.record_fetch_status(property_id, self.name, status, self.clock())
        except StoreError as e:
            logger.error(f"Could not record fetch status for property {property_id}: {e}")
