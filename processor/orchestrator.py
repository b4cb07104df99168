"""Runs partner syncs over every active import link."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional

from processor.config import Settings
from processor.models import ImportLink, OutcomeStatus, SyncOutcome, SyncProgress
from processor.reconciler import SyncReconciler
from storage.link_store import ImportLinkStore

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int, int, SyncOutcome], None]


class SyncOrchestrator:
    """Sequential sync of all active import links."""

    def __init__(
        self,
        link_store: ImportLinkStore,
        handlers: Dict[str, SyncReconciler],
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.link_store = link_store
        self.handlers = handlers
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.cancelled = False

    def iter_sync(
        self,
        force: bool = False,
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> Iterator[SyncProgress]:
        """
        Sync links one at a time, yielding progress after each.

        Args:
            force: Ignore the per-partner recheck interval
            should_cancel: Checked between links; stops the run when true

        Yields:
            SyncProgress for every processed link, in list order
        """
        self.cancelled = False
        links = self.link_store.list_active()
        total = len(links)
        logger.info(f"Starting sync of {total} active import links", extra={'force': force})

        for index, link in enumerate(links, start=1):
            if should_cancel is not None and should_cancel():
                logger.warning(f"Sync cancelled after {index - 1}/{total} links")
                self.cancelled = True
                return

            outcome = self._sync_link(link, force)
            yield SyncProgress(index=index, total=total, outcome=outcome)

    def run_all(
        self,
        force: bool = False,
        progress_sink: Optional[ProgressSink] = None,
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> List[SyncOutcome]:
        """
        Sync every active link and collect the outcomes.

        Args:
            force: Ignore the per-partner recheck interval
            progress_sink: Called as ``sink(index, total, outcome)`` after each link
            should_cancel: Checked between links

        Returns:
            List of SyncOutcome, one per processed link
        """
        outcomes = []
        for progress in self.iter_sync(force=force, should_cancel=should_cancel):
            outcomes.append(progress.outcome)
            if progress_sink is not None:
                progress_sink(progress.index, progress.total, progress.outcome)
        return outcomes

    def _sync_link(self, link: ImportLink, force: bool) -> SyncOutcome:
        partner = link.partner_name
        now = self.clock()

        if not force and link.last_fetch_at is not None:
            last_fetch_at = link.last_fetch_at
            if last_fetch_at.tzinfo is None:
                last_fetch_at = last_fetch_at.replace(tzinfo=timezone.utc)
            interval = self.settings.recheck_interval(partner)
            next_eligible = last_fetch_at + timedelta(seconds=interval)
            if now < next_eligible:
                return self._skipped(link, 'Interval not met')

        handler = self.handlers.get(partner)
        if handler is None:
            return self._skipped(link, 'No handler found')

        try:
            acquired = self.link_store.acquire_lease(
                link.property_id, partner, now, self.settings.lease_seconds
            )
        except Exception as e:
            logger.error(f"Could not lock link {link.property_id}/{partner}: {e}")
            return self._error(link, e)

        if not acquired:
            return self._skipped(link, 'Sync already in progress')

        try:
            stats = handler.sync(link.property_id, link.feed_url)
            return SyncOutcome(
                partner=partner,
                property_id=link.property_id,
                status=OutcomeStatus.SUCCESS,
                stats=stats
            )
        except Exception as e:
            logger.error(
                f"Sync failed for property {link.property_id}/{partner}: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return self._error(link, e)
        finally:
            try:
                self.link_store.release_lease(link.property_id, partner)
            except Exception as e:
                logger.warning(f"Could not release lease for {link.property_id}/{partner}: {e}")

    def _skipped(self, link: ImportLink, message: str) -> SyncOutcome:
        return SyncOutcome(
            partner=link.partner_name,
            property_id=link.property_id,
            status=OutcomeStatus.SKIPPED,
            message=message
        )

    def _error(self, link: ImportLink, error: Exception) -> SyncOutcome:
        return SyncOutcome(
            partner=link.partner_name,
            property_id=link.property_id,
            status=OutcomeStatus.ERROR,
            message=str(error)
        )
