"""Integration tests for the Lambda handlers."""
import json
import logging
import os
from datetime import date
from unittest.mock import Mock, patch

import pytest

from conftest import PROPERTIES_TABLE, RESERVATIONS_TABLE
from lambda_function import (
    JsonFormatter,
    export_handler,
    lambda_handler,
    reservations_handler,
    setup_logging,
)
from processor.models import (
    OutcomeStatus,
    Property,
    Reservation,
    ReservationSource,
    SyncOutcome,
    SyncStats,
)
from storage.reservation_store import ReservationStore


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'RESERVATIONS_TABLE': 'test-reservations',
        'IMPORT_LINKS_TABLE': 'test-import-links',
        'PROPERTIES_TABLE': 'test-properties',
        'MAINTENANCE_TABLE': 'test-maintenance',
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '30',
        'SYNC_PARTNERS': 'AirBNB'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:test-function'
    context.aws_request_id = 'test-request-id'
    context.get_remaining_time_in_millis.return_value = 300000
    return context


@pytest.fixture
def sample_outcomes():
    """Outcomes of a run over three links."""
    return [
        SyncOutcome('AirBNB', 1, OutcomeStatus.SUCCESS, stats=SyncStats(added=2, skipped=3)),
        SyncOutcome('AirBNB', 2, OutcomeStatus.SKIPPED, message='Interval not met'),
        SyncOutcome('AirBNB', 3, OutcomeStatus.ERROR, message='Failed to fetch iCal content'),
    ]


class TestLambdaHandler:
    """Test cases for the sync handler."""

    @patch('lambda_function.SyncOrchestrator')
    @patch('lambda_function.build_partner_registry')
    @patch('lambda_function.FeedFetcher')
    @patch('lambda_function.ImportLinkStore')
    @patch('lambda_function.ReservationStore')
    def test_successful_sync(
        self,
        mock_reservation_store_class,
        mock_link_store_class,
        mock_fetcher_class,
        mock_registry,
        mock_orchestrator_class,
        mock_env,
        mock_context,
        sample_outcomes
    ):
        """Test a full run reporting per-link results."""
        mock_orchestrator = Mock()
        mock_orchestrator.run_all.return_value = sample_outcomes
        mock_orchestrator.cancelled = False
        mock_orchestrator_class.return_value = mock_orchestrator

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert body['message'] == 'Sync completed'
        assert body['cancelled'] is False
        assert body['summary'] == {'success': 1, 'error': 1, 'skipped': 1}
        assert body['results'][0]['stats']['added'] == 2
        assert body['results'][1]['message'] == 'Interval not met'
        assert 'duration_seconds' in body

        mock_reservation_store_class.assert_called_once_with(table_name='test-reservations')
        mock_link_store_class.assert_called_once_with(table_name='test-import-links')
        mock_fetcher_class.assert_called_once_with(timeout=30)
        mock_registry.assert_called_once()
        assert mock_orchestrator.run_all.call_args.kwargs['force'] is False

    @patch('lambda_function.SyncOrchestrator')
    @patch('lambda_function.build_partner_registry')
    @patch('lambda_function.FeedFetcher')
    @patch('lambda_function.ImportLinkStore')
    @patch('lambda_function.ReservationStore')
    def test_force_flag_is_passed(
        self,
        mock_reservation_store_class,
        mock_link_store_class,
        mock_fetcher_class,
        mock_registry,
        mock_orchestrator_class,
        mock_env,
        mock_context
    ):
        """Test that the event can bypass the recheck interval."""
        mock_orchestrator = Mock()
        mock_orchestrator.run_all.return_value = []
        mock_orchestrator.cancelled = False
        mock_orchestrator_class.return_value = mock_orchestrator

        response = lambda_handler({'force': True}, mock_context)

        assert response['statusCode'] == 200
        assert mock_orchestrator.run_all.call_args.kwargs['force'] is True

    @patch('lambda_function.SyncOrchestrator')
    @patch('lambda_function.build_partner_registry')
    @patch('lambda_function.FeedFetcher')
    @patch('lambda_function.ImportLinkStore')
    @patch('lambda_function.ReservationStore')
    def test_deadline_stops_run(
        self,
        mock_reservation_store_class,
        mock_link_store_class,
        mock_fetcher_class,
        mock_registry,
        mock_orchestrator_class,
        mock_env,
        mock_context,
        sample_outcomes
    ):
        """Test cancellation wiring to the remaining invocation time."""
        mock_context.get_remaining_time_in_millis.return_value = 10000
        mock_orchestrator = Mock()
        mock_orchestrator.run_all.return_value = sample_outcomes[:1]
        mock_orchestrator.cancelled = True
        mock_orchestrator_class.return_value = mock_orchestrator

        response = lambda_handler({}, mock_context)

        should_cancel = mock_orchestrator.run_all.call_args.kwargs['should_cancel']
        assert should_cancel() is True

        body = json.loads(response['body'])
        assert response['statusCode'] == 200
        assert body['message'] == 'Sync stopped before deadline'
        assert body['cancelled'] is True

    @patch('lambda_function.SyncOrchestrator')
    @patch('lambda_function.build_partner_registry')
    @patch('lambda_function.FeedFetcher')
    @patch('lambda_function.ImportLinkStore')
    @patch('lambda_function.ReservationStore')
    def test_link_listing_failure(
        self,
        mock_reservation_store_class,
        mock_link_store_class,
        mock_fetcher_class,
        mock_registry,
        mock_orchestrator_class,
        mock_env,
        mock_context
    ):
        """Test error handling when the run itself fails."""
        mock_orchestrator = Mock()
        mock_orchestrator.run_all.side_effect = Exception('DynamoDB error')
        mock_orchestrator_class.return_value = mock_orchestrator

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Sync failed'
        assert 'DynamoDB error' in body['error']
        assert body['error_type'] == 'Exception'
        assert 'duration_seconds' in body

    @patch('lambda_function.SyncOrchestrator')
    @patch('lambda_function.build_partner_registry')
    @patch('lambda_function.FeedFetcher')
    @patch('lambda_function.ImportLinkStore')
    @patch('lambda_function.ReservationStore')
    @patch('lambda_function.setup_logging')
    def test_logging_output(
        self,
        mock_setup_logging,
        mock_reservation_store_class,
        mock_link_store_class,
        mock_fetcher_class,
        mock_registry,
        mock_orchestrator_class,
        mock_env,
        mock_context,
        sample_outcomes,
        caplog
    ):
        """Test that start, progress and completion are logged."""
        def run_all(force, progress_sink, should_cancel):
            for index, outcome in enumerate(sample_outcomes, start=1):
                progress_sink(index, len(sample_outcomes), outcome)
            return sample_outcomes

        mock_orchestrator = Mock()
        mock_orchestrator.run_all.side_effect = run_all
        mock_orchestrator.cancelled = False
        mock_orchestrator_class.return_value = mock_orchestrator

        with caplog.at_level(logging.INFO, logger='lambda_function'):
            response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        log_messages = [record.message for record in caplog.records]
        assert any('Lambda execution started' in msg for msg in log_messages)
        assert any('Link 1/3: property 1 AirBNB success' in msg for msg in log_messages)
        assert any('Link 3/3: property 3 AirBNB error' in msg for msg in log_messages)
        assert any('Lambda execution completed' in msg for msg in log_messages)

        progress = [r for r in caplog.records if hasattr(r, 'progress')]
        assert [r.progress for r in progress] == [33, 66, 100]
        assert progress[1].outcome['message'] == 'Interval not met'


class TestExportHandler:
    """Test cases for the export handler."""

    def test_missing_guid(self, mock_env, mock_context):
        response = export_handler({'pathParameters': None}, mock_context)

        assert response['statusCode'] == 404
        assert response['body'] == 'Invalid export GUID'

    @patch('lambda_function.PropertyStore')
    def test_unknown_guid(self, mock_property_store_class, mock_env, mock_context):
        mock_property_store_class.return_value.find_by_export_guid.return_value = None

        response = export_handler({'pathParameters': {'guid': 'nope'}}, mock_context)

        assert response['statusCode'] == 404
        assert response['body'] == 'Property not found'
        mock_property_store_class.return_value.find_by_export_guid.assert_called_once_with('nope')

    @patch('lambda_function.MaintenanceStore')
    @patch('lambda_function.ReservationStore')
    @patch('lambda_function.PropertyStore')
    def test_calendar_served_as_attachment(
        self,
        mock_property_store_class,
        mock_reservation_store_class,
        mock_maintenance_store_class,
        mock_env,
        mock_context
    ):
        """Test a successful export response."""
        mock_property_store_class.return_value.find_by_export_guid.return_value = Property(
            property_id=5, name='Lake House', export_guid='guid-5'
        )
        mock_reservation_store_class.return_value.list_internal_for_export.return_value = []
        mock_maintenance_store_class.return_value.list_for_export.return_value = []

        response = export_handler({'pathParameters': {'guid': 'guid-5'}}, mock_context)

        assert response['statusCode'] == 200
        assert response['headers']['Content-Type'] == 'text/calendar; charset=utf-8'
        assert response['headers']['Content-Disposition'] == 'attachment; filename="calendar.ics"'
        assert response['body'].startswith('BEGIN:VCALENDAR')
        mock_reservation_store_class.return_value.list_internal_for_export.assert_called_once_with(5)
        mock_maintenance_store_class.return_value.list_for_export.assert_called_once_with(5)

    @patch('lambda_function.PropertyStore')
    def test_store_failure(self, mock_property_store_class, mock_env, mock_context):
        mock_property_store_class.return_value.find_by_export_guid.side_effect = Exception('boom')

        response = export_handler({'pathParameters': {'guid': 'guid-5'}}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Export failed'
        assert body['error'] == 'boom'


class TestReservationsHandler:
    """Test cases for the date-range reservation query."""

    @pytest.fixture
    def seeded(self, dynamodb, mock_env):
        dynamodb.Table(PROPERTIES_TABLE).put_item(
            Item={'property_id': 1, 'name': 'Lake House', 'export_guid': 'guid-1'}
        )
        store = ReservationStore(RESERVATIONS_TABLE)
        for property_id, name, start, end in [
            (1, 'June', date(2025, 6, 1), date(2025, 6, 5)),
            (1, 'July', date(2025, 7, 1), date(2025, 7, 3)),
            (2, 'Elsewhere', date(2025, 6, 3), date(2025, 6, 4)),
        ]:
            store.insert(Reservation(
                reservation_id=None,
                property_id=property_id,
                source=ReservationSource.INTERNAL,
                name=name,
                start_date=start,
                end_date=end
            ))
        return store

    def query(self, **params):
        return reservations_handler({'queryStringParameters': params}, Mock())

    def test_reservations_in_range_for_property(self, seeded):
        response = self.query(start_date='2025-06-04', end_date='2025-06-30', property_id='1')

        assert response['statusCode'] == 200
        assert response['headers']['Content-Type'] == 'application/json'
        body = json.loads(response['body'])
        assert body['property_id'] == 1
        assert [r['name'] for r in body['reservations']] == ['June']
        assert body['reservations'][0]['start_date'] == '2025-06-01'
        assert body['reservations'][0]['source'] == 'internal'

    def test_reservations_in_range_for_all_properties(self, seeded):
        response = self.query(start_date='2025-06-04', end_date='2025-06-30')

        body = json.loads(response['body'])
        assert sorted(r['name'] for r in body['reservations']) == ['Elsewhere', 'June']

    def test_default_window_is_thirty_days(self, seeded):
        response = self.query(start_date='2025-06-20')

        body = json.loads(response['body'])
        assert body['end_date'] == '2025-07-20'
        assert [r['name'] for r in body['reservations']] == ['July']

    def test_unknown_property(self, seeded):
        response = self.query(start_date='2025-06-01', property_id='99')

        assert response['statusCode'] == 404
        assert json.loads(response['body'])['message'] == 'Property not found'

    @pytest.mark.parametrize('params', [
        {'start_date': 'June 1st'},
        {'start_date': '2025-06-01', 'property_id': 'one'},
        {'start_date': '2025-06-10', 'end_date': '2025-06-01'},
    ])
    def test_bad_parameters(self, mock_env, params):
        response = self.query(**params)

        assert response['statusCode'] == 400


class TestSetupLogging:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self):
        """Test logging setup with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test logging setup with DEBUG level."""
        setup_logging('DEBUG')
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_unknown_level(self):
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO


class TestJsonFormatter:
    """Test cases for the JSON log formatter."""

    def test_extra_fields_are_included(self):
        record = logging.makeLogRecord({
            'name': 'processor.reconciler',
            'levelname': 'WARNING',
            'msg': 'Event not persisted: %s',
            'args': ('uid-1',),
            'property_id': 3,
            'partner': 'AirBNB'
        })

        data = json.loads(JsonFormatter().format(record))

        assert data['message'] == 'Event not persisted: uid-1'
        assert data['level'] == 'WARNING'
        assert data['logger'] == 'processor.reconciler'
        assert data['property_id'] == 3
        assert data['partner'] == 'AirBNB'
        assert 'args' not in data
        assert 'exception' not in data
