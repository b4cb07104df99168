"""Partner-specific feed handlers and the partner registry."""
import logging
import re
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, Type

from feeds.feed_fetcher import FeedFetcher
from processor.config import Settings
from processor.models import CalendarEvent
from processor.reconciler import SyncReconciler
from storage.link_store import ImportLinkStore
from storage.reservation_store import ReservationStore

logger = logging.getLogger(__name__)


class AirbnbReconciler(SyncReconciler):
    """Airbnb iCal export conventions."""

    name = 'AirBNB'

    PLACEHOLDER_SUMMARY = 'Airbnb (Not available)'
    RESERVATION_URL = 'https://www.airbnb.com/hosting/reservations/details/{code}'
    RESERVATION_URL_PATTERN = re.compile(
        r'Reservation\s+URL:\s*https?://www\.airbnb\.com/hosting/reservations/details/([A-Z0-9]+)',
        re.IGNORECASE
    )

    def is_placeholder(self, event: CalendarEvent) -> bool:
        return event.summary.strip() == self.PLACEHOLDER_SUMMARY

    def extract_label(self, event: CalendarEvent) -> Tuple[str, Optional[str]]:
        """
        Use the reservation code from the reservation URL as the name.

        Airbnb puts ``Reservation URL: .../details/<CODE>`` in the
        description, next to guest details that change between exports.
        Falls back to the summary when no URL is present.
        """
        for text in (event.description, event.summary):
            normalized = re.sub(r'\s+', ' ', text or '')
            match = self.RESERVATION_URL_PATTERN.search(normalized)
            if match:
                code = match.group(1)
                url = self.RESERVATION_URL.format(code=code)
                return code, f"Reservation URL: {url}"

        return super().extract_label(event)


PARTNER_HANDLERS: Dict[str, Type[SyncReconciler]] = {
    AirbnbReconciler.name: AirbnbReconciler,
}


def build_partner_registry(
    settings: Settings,
    reservation_store: ReservationStore,
    link_store: ImportLinkStore,
    fetcher: FeedFetcher,
    clock: Optional[Callable[[], datetime]] = None
) -> Dict[str, SyncReconciler]:
    """
    Instantiate a handler for every configured partner with a known handler.

    Returns:
        Dictionary mapping partner name to its reconciler
    """
    handlers = {}
    for name in settings.partner_names:
        handler_class = PARTNER_HANDLERS.get(name)
        if handler_class is None:
            logger.warning(f"No handler implemented for partner: {name}")
            continue

        handlers[name] = handler_class(
            reservation_store,
            link_store,
            fetcher,
            retention_days=settings.keep_deleted_days(name),
            clock=clock
        )
    return handlers
