"""Runtime settings read from environment variables."""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_RECHECK_INTERVAL = 3600
DEFAULT_KEEP_DELETED_DAYS = 30


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    """Read an integer variable, falling back to the default on bad input."""
    raw = environ.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {raw!r}, using {default}")
        return default


def partner_env_prefix(partner_name: str) -> str:
    """Environment prefix for a partner, e.g. ``AirBNB`` -> ``AIRBNB``."""
    return re.sub(r'[^A-Z0-9]', '_', partner_name.upper())


@dataclass
class PartnerSettings:
    """Per-partner sync policy."""
    recheck_interval: int = DEFAULT_RECHECK_INTERVAL
    keep_deleted_days: int = DEFAULT_KEEP_DELETED_DAYS


@dataclass
class TimeWindows:
    """Check-in/checkout times and export buffer maxima."""
    early_start: str = '06:00:00'
    standard_start: str = '15:00:00'
    standard_end: str = '12:00:00'
    late_end: str = '22:00:00'
    pre_reservation_days: int = 0
    post_reservation_days: int = 0


@dataclass
class Settings:
    reservations_table: str = 'rental-reservations'
    import_links_table: str = 'rental-import-links'
    properties_table: str = 'rental-properties'
    maintenance_table: str = 'rental-maintenance'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    lease_seconds: int = 900
    cancel_margin_seconds: int = 30
    time_windows: TimeWindows = field(default_factory=TimeWindows)
    partners: Dict[str, PartnerSettings] = field(default_factory=dict)

    def partner(self, name: str) -> PartnerSettings:
        """Settings for a partner, defaults when it is not configured."""
        return self.partners.get(name, PartnerSettings())

    def recheck_interval(self, name: str) -> int:
        return self.partner(name).recheck_interval

    def keep_deleted_days(self, name: str) -> int:
        return self.partner(name).keep_deleted_days

    @property
    def partner_names(self) -> List[str]:
        return list(self.partners)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Settings instance
        """
        if environ is None:
            environ = os.environ

        time_windows = TimeWindows(
            early_start=environ.get('EARLY_START_TIME', '06:00:00'),
            standard_start=environ.get('STANDARD_START_TIME', '15:00:00'),
            standard_end=environ.get('STANDARD_END_TIME', '12:00:00'),
            late_end=environ.get('LATE_END_TIME', '22:00:00'),
            pre_reservation_days=_env_int(environ, 'PRE_RESERVATION_DAYS', 0),
            post_reservation_days=_env_int(environ, 'POST_RESERVATION_DAYS', 0),
        )

        partners = {}
        names = environ.get('SYNC_PARTNERS', 'AirBNB')
        for name in [n.strip() for n in names.split(',') if n.strip()]:
            prefix = partner_env_prefix(name)
            partners[name] = PartnerSettings(
                recheck_interval=_env_int(
                    environ, f'{prefix}_RECHECK_INTERVAL', DEFAULT_RECHECK_INTERVAL
                ),
                keep_deleted_days=_env_int(
                    environ, f'{prefix}_KEEP_DELETED_DAYS', DEFAULT_KEEP_DELETED_DAYS
                ),
            )

        return cls(
            reservations_table=environ.get('RESERVATIONS_TABLE', 'rental-reservations'),
            import_links_table=environ.get('IMPORT_LINKS_TABLE', 'rental-import-links'),
            properties_table=environ.get('PROPERTIES_TABLE', 'rental-properties'),
            maintenance_table=environ.get('MAINTENANCE_TABLE', 'rental-maintenance'),
            log_level=environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=_env_int(environ, 'TIMEOUT_SECONDS', 30),
            lease_seconds=_env_int(environ, 'LEASE_SECONDS', 900),
            cancel_margin_seconds=_env_int(environ, 'CANCEL_MARGIN_SECONDS', 30),
            time_windows=time_windows,
            partners=partners,
        )
