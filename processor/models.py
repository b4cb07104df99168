"""Data models for calendar synchronization and export."""
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional


class ReservationSource(Enum):
    """Where a reservation originated."""
    INTERNAL = 'internal'
    SYNC_PARTNER = 'sync_partner'


class ReservationStatus(Enum):
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'


class StartTime(Enum):
    """Check-in time class."""
    EARLY = 'early'
    STANDARD = 'standard'


class EndTime(Enum):
    """Checkout time class."""
    STANDARD = 'standard'
    LATE = 'late'


class OutcomeStatus(Enum):
    SUCCESS = 'success'
    ERROR = 'error'
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class CalendarEvent:
    """Raw VEVENT as read from a partner feed."""
    uid: Optional[str]
    summary: str
    description: str
    start: Optional[str]
    end: Optional[str]
    is_all_day: bool = False


@dataclass
class Reservation:
    """Stored reservation, internal or imported from a partner feed."""
    reservation_id: Optional[int]
    property_id: int
    source: ReservationSource
    name: str
    start_date: date
    end_date: date
    status: ReservationStatus = ReservationStatus.CONFIRMED
    description: Optional[str] = None
    start_time: StartTime = StartTime.STANDARD
    end_time: EndTime = EndTime.STANDARD
    sync_partner_name: Optional[str] = None
    external_id: Optional[str] = None
    orphaned: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None

    def __post_init__(self):
        if self.source == ReservationSource.INTERNAL and self.external_id:
            raise ValueError('Internal reservations cannot carry an external id')

    @property
    def is_external(self) -> bool:
        return self.source == ReservationSource.SYNC_PARTNER

    @property
    def export_uid(self) -> str:
        """Stable UID used when the reservation is published in an export."""
        return f"reservation-{self.reservation_id}@rental-calendar"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view of the reservation."""
        return {
            'reservation_id': self.reservation_id,
            'property_id': self.property_id,
            'source': self.source.value,
            'status': self.status.value,
            'name': self.name,
            'description': self.description,
            'start_date': self.start_date.isoformat(),
            'start_time': self.start_time.value,
            'end_date': self.end_date.isoformat(),
            'end_time': self.end_time.value,
            'sync_partner_name': self.sync_partner_name,
            'orphaned': self.orphaned
        }


@dataclass
class MaintenanceBlock:
    """Maintenance window that blocks a property."""
    maintenance_id: int
    property_id: int
    start_date: date
    end_date: date
    description: str
    maintenance_type: Optional[str] = None


@dataclass
class Property:
    property_id: int
    name: str
    timezone: str = 'UTC'
    export_guid: Optional[str] = None


@dataclass
class ImportLink:
    """Partner feed registered for a property."""
    property_id: int
    partner_name: str
    feed_url: str
    is_active: bool = True
    last_fetch_at: Optional[datetime] = None
    last_fetch_status: Optional[str] = None


@dataclass
class SyncStats:
    """Counters for one reconciliation pass."""
    added: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    orphaned: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class PruneResult:
    """Result of the post-pass over reservations missing from a feed."""
    deleted: int = 0
    orphaned: int = 0


@dataclass
class SyncOutcome:
    """Result of syncing one import link."""
    partner: str
    property_id: int
    status: OutcomeStatus
    stats: Optional[SyncStats] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'property_id': self.property_id,
            'partner': self.partner,
            'status': self.status.value,
        }
        if self.stats is not None:
            data['stats'] = self.stats.to_dict()
        if self.message is not None:
            data['message'] = self.message
        return data


@dataclass
class SyncProgress:
    """One step of an orchestrated sync run."""
    index: int
    total: int
    outcome: SyncOutcome
