"""AWS Lambda handlers for rental calendar sync, export and reservation queries."""
import json
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict

from export.export_generator import ExportGenerator, content_disposition
from feeds.feed_fetcher import FeedFetcher
from processor.config import Settings
from processor.models import OutcomeStatus, SyncOutcome
from processor.orchestrator import SyncOrchestrator
from processor.partners import build_partner_registry
from storage.link_store import ImportLinkStore
from storage.property_store import MaintenanceStore, PropertyStore
from storage.reservation_store import ReservationStore

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRIBUTES = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _log_progress(index: int, total: int, outcome: SyncOutcome) -> None:
    logging.getLogger(__name__).info(
        f"Link {index}/{total}: property {outcome.property_id} "
        f"{outcome.partner} {outcome.status.value}",
        extra={'progress': int(index / total * 100) if total else 100, 'outcome': outcome.to_dict()}
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled sync of every active partner import link.

    Args:
        event: EventBridge event payload; ``force`` skips the recheck interval
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-link results
    """
    settings = Settings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    force = bool((event or {}).get('force', False))
    logger.info(
        "Lambda execution started",
        extra={'force': force, 'partners': settings.partner_names}
    )

    def should_cancel() -> bool:
        remaining = getattr(context, 'get_remaining_time_in_millis', None)
        if remaining is None:
            return False
        return remaining() < settings.cancel_margin_seconds * 1000

    try:
        reservation_store = ReservationStore(table_name=settings.reservations_table)
        link_store = ImportLinkStore(table_name=settings.import_links_table)
        fetcher = FeedFetcher(timeout=settings.timeout_seconds)
        handlers = build_partner_registry(settings, reservation_store, link_store, fetcher)
        orchestrator = SyncOrchestrator(link_store, handlers, settings)

        outcomes = orchestrator.run_all(
            force=force,
            progress_sink=_log_progress,
            should_cancel=should_cancel
        )
        cancelled = orchestrator.cancelled

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    summary = {status.value: 0 for status in OutcomeStatus}
    for outcome in outcomes:
        summary[outcome.status.value] += 1

    logger.info(
        "Lambda execution completed",
        extra={
            'duration_seconds': round(duration, 2),
            'cancelled': cancelled,
            **summary
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sync completed' if not cancelled else 'Sync stopped before deadline',
            'summary': summary,
            'cancelled': cancelled,
            'results': [outcome.to_dict() for outcome in outcomes],
            'duration_seconds': round(duration, 2)
        })
    }


def export_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Serve the iCal export of a property, looked up by its export GUID.

    Args:
        event: API Gateway proxy event with ``pathParameters.guid``
        context: Lambda context object

    Returns:
        API Gateway proxy response with the calendar as an attachment
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    guid = ((event or {}).get('pathParameters') or {}).get('guid') or ''
    if not guid:
        return {'statusCode': 404, 'body': 'Invalid export GUID'}

    try:
        prop = PropertyStore(settings.properties_table).find_by_export_guid(guid)
        if prop is None:
            return {'statusCode': 404, 'body': 'Property not found'}

        reservations = ReservationStore(
            table_name=settings.reservations_table
        ).list_internal_for_export(prop.property_id)
        maintenance = MaintenanceStore(
            settings.maintenance_table
        ).list_for_export(prop.property_id)

        document = ExportGenerator(settings.time_windows).generate(prop, reservations, maintenance)

    except Exception as e:
        logger.error(
            f"Export failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Export failed',
                'error': str(e),
                'error_type': type(e).__name__
            })
        }

    return {
        'statusCode': 200,
        'headers': {
            'Content-Type': 'text/calendar; charset=utf-8',
            'Content-Disposition': content_disposition()
        },
        'body': document
    }


def reservations_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Reservations overlapping a date range, for calendar views.

    Query parameters are ``start_date`` (default: today, UTC), ``end_date``
    (default: 30 days after the start) and an optional ``property_id``.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway proxy response with a JSON body
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    params = (event or {}).get('queryStringParameters') or {}
    try:
        if params.get('start_date'):
            start_date = date.fromisoformat(params['start_date'])
        else:
            start_date = datetime.now(timezone.utc).date()
        if params.get('end_date'):
            end_date = date.fromisoformat(params['end_date'])
        else:
            end_date = start_date + timedelta(days=30)
        property_id = int(params['property_id']) if params.get('property_id') else None
    except ValueError as e:
        return _json_response(400, {'message': 'Invalid query parameters', 'error': str(e)})

    if end_date < start_date:
        return _json_response(400, {'message': 'end_date is before start_date'})

    try:
        if property_id is not None and \
                PropertyStore(settings.properties_table).get(property_id) is None:
            return _json_response(404, {'message': 'Property not found'})

        reservations = ReservationStore(
            table_name=settings.reservations_table
        ).find_by_date_range(start_date, end_date, property_id=property_id)

    except Exception as e:
        logger.error(
            f"Reservation query failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _json_response(500, {
            'message': 'Query failed',
            'error': str(e),
            'error_type': type(e).__name__
        })

    logger.info(
        f"Returning {len(reservations)} reservations",
        extra={
            'start_date': start_date.isoformat(),
            'end_date': end_date.isoformat(),
            'property_id': property_id
        }
    )
    return _json_response(200, {
        'start_date': start_date.isoformat(),
        'end_date': end_date.isoformat(),
        'property_id': property_id,
        'reservations': [reservation.to_dict() for reservation in reservations]
    })


def _json_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }
