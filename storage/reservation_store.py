"""DynamoDB-backed reservation store."""
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from processor.errors import StoreError
from processor.models import (
    EndTime,
    PruneResult,
    Reservation,
    ReservationSource,
    ReservationStatus,
    StartTime,
)

logger = logging.getLogger(__name__)

COUNTER_PROPERTY_ID = 0
COUNTER_KEY = '#counter'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _to_item_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def external_key(partner_name: str, external_id: str) -> str:
    """Sort key of an imported reservation, unique per (property, partner, uid)."""
    return f"ext#{partner_name}#{external_id}"


def internal_key(reservation_id: int) -> str:
    return f"int#{reservation_id:010d}"


class ReservationStore:
    """Store for reservations keyed by property and reservation key."""

    TRANSACTION_LIMIT = 100  # DynamoDB TransactWriteItems limit

    def __init__(self, table_name: str, clock: Callable[[], datetime] = utc_now):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the reservations table
            clock: Returns the current UTC time
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        self.clock = clock
        self._serializer = TypeSerializer()
        logger.info(f"Initialized ReservationStore for table: {table_name}")

    def find_by_external_id(
        self,
        property_id: int,
        partner_name: str,
        external_id: str
    ) -> Optional[Reservation]:
        """Look up an imported reservation by its feed UID."""
        try:
            response = self.table.get_item(
                Key={
                    'property_id': property_id,
                    'reservation_key': external_key(partner_name, external_id)
                }
            )
        except ClientError as e:
            raise StoreError(f"Failed to find reservation by external id: {e}") from e

        item = response.get('Item')
        return self._item_to_reservation(item) if item else None

    def list_external(self, property_id: int, partner_name: str) -> Dict[str, Reservation]:
        """
        All reservations imported from one partner for a property.

        Returns:
            Dictionary mapping external id to Reservation
        """
        items = self._query(
            Key('property_id').eq(property_id) &
            Key('reservation_key').begins_with(f"ext#{partner_name}#")
        )
        reservations = {}
        for item in items:
            reservation = self._item_to_reservation(item)
            reservations[reservation.external_id] = reservation
        return reservations

    def insert(self, reservation: Reservation) -> Reservation:
        """
        Insert a new reservation, allocating its numeric id.

        Raises:
            StoreError: If the write fails or the key already exists
        """
        now = self.clock()
        reservation.reservation_id = self._next_id()
        reservation.created_at = now
        reservation.updated_at = now
        reservation.last_verified_at = now

        try:
            self.table.put_item(
                Item=self._reservation_to_item(reservation),
                ConditionExpression='attribute_not_exists(reservation_key)'
            )
        except ClientError as e:
            raise StoreError(f"Failed to create reservation: {e}") from e

        return reservation

    def update_details(
        self,
        reservation: Reservation,
        start_date: date,
        end_date: date,
        name: str,
        description: Optional[str]
    ) -> Reservation:
        """Update dates and label in place and clear the orphan flag."""
        now = self.clock()
        try:
            self.table.update_item(
                Key=self._key_of(reservation),
                UpdateExpression=(
                    'SET start_date = :start, end_date = :end, #name = :name, '
                    '#description = :description, orphaned = :false, '
                    'updated_at = :now, last_verified_at = :now'
                ),
                ExpressionAttributeNames={'#name': 'name', '#description': 'description'},
                ExpressionAttributeValues={
                    ':start': start_date.isoformat(),
                    ':end': end_date.isoformat(),
                    ':name': name,
                    ':description': description,
                    ':false': False,
                    ':now': now.isoformat()
                }
            )
        except ClientError as e:
            raise StoreError(f"Failed to update reservation: {e}") from e

        reservation.start_date = start_date
        reservation.end_date = end_date
        reservation.name = name
        reservation.description = description
        reservation.orphaned = False
        reservation.updated_at = now
        reservation.last_verified_at = now
        return reservation

    def touch(self, reservation: Reservation) -> Reservation:
        """Record that a reservation was seen unchanged in its feed."""
        now = self.clock()
        try:
            self.table.update_item(
                Key=self._key_of(reservation),
                UpdateExpression='SET last_verified_at = :now, orphaned = :false',
                ExpressionAttributeValues={':now': now.isoformat(), ':false': False}
            )
        except ClientError as e:
            raise StoreError(f"Failed to update reservation last checked: {e}") from e

        reservation.last_verified_at = now
        reservation.orphaned = False
        return reservation

    def prune_missing(
        self,
        property_id: int,
        partner_name: str,
        seen_ids: Iterable[str],
        retention_days: int,
        today: date
    ) -> PruneResult:
        """
        Delete or orphan imported reservations no longer present in the feed.

        Reservations ending today or later are deleted. Past reservations are
        marked orphaned while within ``retention_days`` of their end date and
        deleted after that.

        Args:
            property_id: Property the feed belongs to
            partner_name: Partner the feed belongs to
            seen_ids: External ids present in the current feed
            retention_days: Days to keep orphaned past reservations
            today: Reference date

        Returns:
            PruneResult with deleted and orphaned counts
        """
        seen = set(seen_ids)
        existing = self.list_external(property_id, partner_name)
        now = self.clock().isoformat()

        operations = []
        result = PruneResult()

        for external_id, reservation in existing.items():
            if external_id in seen:
                continue

            key = self._serialize(self._key_of(reservation))
            if reservation.end_date >= today or \
                    (today - reservation.end_date).days > retention_days:
                operations.append({
                    'Delete': {'TableName': self.table_name, 'Key': key}
                })
                result.deleted += 1
            elif not reservation.orphaned:
                operations.append({
                    'Update': {
                        'TableName': self.table_name,
                        'Key': key,
                        'UpdateExpression': 'SET orphaned = :true, updated_at = :now',
                        'ExpressionAttributeValues': self._serialize({
                            ':true': True,
                            ':now': now
                        })
                    }
                })
                result.orphaned += 1

        logger.info(
            f"Prune plan for property {property_id}/{partner_name}: "
            f"{result.deleted} to delete, {result.orphaned} to orphan"
        )

        client = self.dynamodb.meta.client
        for i in range(0, len(operations), self.TRANSACTION_LIMIT):
            batch = operations[i:i + self.TRANSACTION_LIMIT]
            try:
                client.transact_write_items(TransactItems=batch)
            except ClientError as e:
                raise StoreError(f"Failed to delete old reservations: {e}") from e

        return result

    def find_by_date_range(
        self,
        start_date: date,
        end_date: date,
        property_id: Optional[int] = None
    ) -> List[Reservation]:
        """Non-cancelled reservations overlapping [start_date, end_date]."""
        condition = (
            Attr('start_date').lte(end_date.isoformat()) &
            Attr('end_date').gte(start_date.isoformat()) &
            Attr('status').ne(ReservationStatus.CANCELLED.value)
        )
        if property_id is not None:
            items = self._query(Key('property_id').eq(property_id), condition)
        else:
            items = self._scan(condition & Attr('reservation_id').exists())

        reservations = [self._item_to_reservation(item) for item in items]
        return sorted(reservations, key=lambda r: (r.start_date, r.start_time.value))

    def list_internal_for_export(self, property_id: int) -> List[Reservation]:
        """Internal, non-cancelled reservations of a property in start order."""
        items = self._query(
            Key('property_id').eq(property_id) &
            Key('reservation_key').begins_with('int#'),
            Attr('status').ne(ReservationStatus.CANCELLED.value)
        )
        reservations = [self._item_to_reservation(item) for item in items]
        return sorted(reservations, key=lambda r: (r.start_date, r.start_time.value))

    def _next_id(self) -> int:
        """Allocate a reservation id from the atomic counter item."""
        try:
            response = self.table.update_item(
                Key={'property_id': COUNTER_PROPERTY_ID, 'reservation_key': COUNTER_KEY},
                UpdateExpression='ADD next_id :one',
                ExpressionAttributeValues={':one': 1},
                ReturnValues='UPDATED_NEW'
            )
        except ClientError as e:
            raise StoreError(f"Failed to allocate reservation id: {e}") from e
        return int(response['Attributes']['next_id'])

    def _query(self, key_condition, filter_expression=None) -> List[dict]:
        kwargs = {'KeyConditionExpression': key_condition}
        if filter_expression is not None:
            kwargs['FilterExpression'] = filter_expression

        try:
            response = self.table.query(**kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise StoreError(f"Failed to query reservations: {e}") from e

        return items

    def _scan(self, filter_expression) -> List[dict]:
        try:
            response = self.table.scan(FilterExpression=filter_expression)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=filter_expression,
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise StoreError(f"Failed to scan reservations: {e}") from e

        return items

    def _serialize(self, values: dict) -> dict:
        return {k: self._serializer.serialize(v) for k, v in values.items()}

    def _key_of(self, reservation: Reservation) -> dict:
        if reservation.is_external:
            sort_key = external_key(reservation.sync_partner_name, reservation.external_id)
        else:
            sort_key = internal_key(reservation.reservation_id)
        return {'property_id': reservation.property_id, 'reservation_key': sort_key}

    def _reservation_to_item(self, reservation: Reservation) -> dict:
        item = self._key_of(reservation)
        item.update({
            'reservation_id': reservation.reservation_id,
            'source': reservation.source.value,
            'status': reservation.status.value,
            'name': reservation.name,
            'start_date': reservation.start_date.isoformat(),
            'start_time': reservation.start_time.value,
            'end_date': reservation.end_date.isoformat(),
            'end_time': reservation.end_time.value,
            'orphaned': reservation.orphaned,
            'created_at': _to_item_timestamp(reservation.created_at),
            'updated_at': _to_item_timestamp(reservation.updated_at),
            'last_verified_at': _to_item_timestamp(reservation.last_verified_at)
        })

        # Add optional fields if present
        if reservation.description:
            item['description'] = reservation.description
        if reservation.sync_partner_name:
            item['sync_partner_name'] = reservation.sync_partner_name
        if reservation.external_id:
            item['external_id'] = reservation.external_id

        return item

    def _item_to_reservation(self, item: dict) -> Reservation:
        return Reservation(
            reservation_id=int(item['reservation_id']),
            property_id=int(item['property_id']),
            source=ReservationSource(item['source']),
            status=ReservationStatus(item['status']),
            name=item['name'],
            description=item.get('description'),
            start_date=date.fromisoformat(item['start_date']),
            start_time=StartTime(item.get('start_time', StartTime.STANDARD.value)),
            end_date=date.fromisoformat(item['end_date']),
            end_time=EndTime(item.get('end_time', EndTime.STANDARD.value)),
            sync_partner_name=item.get('sync_partner_name'),
            external_id=item.get('external_id'),
            orphaned=bool(item.get('orphaned', False)),
            created_at=_parse_timestamp(item.get('created_at')),
            updated_at=_parse_timestamp(item.get('updated_at')),
            last_verified_at=_parse_timestamp(item.get('last_verified_at'))
        )
