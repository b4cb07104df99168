"""DynamoDB-backed store for partner feed import links."""
import logging
from datetime import datetime, timedelta
from typing import List

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.errors import StoreError
from processor.models import ImportLink

logger = logging.getLogger(__name__)


class ImportLinkStore:
    """Store for import links keyed by property and partner name."""

    STATUS_MAX_LENGTH = 50

    def __init__(self, table_name: str):
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized ImportLinkStore for table: {table_name}")

    def list_active(self) -> List[ImportLink]:
        """
        All active import links, ordered by property id then partner name.

        Raises:
            StoreError: If the table cannot be scanned
        """
        try:
            response = self.table.scan(FilterExpression=Attr('is_active').eq(True))
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=Attr('is_active').eq(True),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise StoreError(f"Failed to fetch import links: {e}") from e

        links = [self._item_to_link(item) for item in items]
        return sorted(links, key=lambda link: (link.property_id, link.partner_name))

    def save(self, link: ImportLink) -> ImportLink:
        """Create or replace an import link."""
        item = {
            'property_id': link.property_id,
            'partner_name': link.partner_name,
            'feed_url': link.feed_url,
            'is_active': link.is_active
        }
        if link.last_fetch_at:
            item['last_fetch_at'] = link.last_fetch_at.isoformat()
        if link.last_fetch_status:
            item['last_fetch_status'] = link.last_fetch_status

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            raise StoreError(f"Failed to create import link: {e}") from e
        return link

    def record_fetch_status(
        self,
        property_id: int,
        partner_name: str,
        status: str,
        fetched_at: datetime
    ) -> None:
        """Store the last fetch status (truncated) and time of a link."""
        try:
            self.table.update_item(
                Key={'property_id': property_id, 'partner_name': partner_name},
                UpdateExpression='SET last_fetch_status = :status, last_fetch_at = :at',
                ConditionExpression='attribute_exists(partner_name)',
                ExpressionAttributeValues={
                    ':status': status[:self.STATUS_MAX_LENGTH],
                    ':at': fetched_at.isoformat()
                }
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(
                    f"Import link {property_id}/{partner_name} no longer exists, "
                    f"status not recorded"
                )
                return
            raise StoreError(f"Failed to update link status: {e}") from e

    def acquire_lease(
        self,
        property_id: int,
        partner_name: str,
        now: datetime,
        lease_seconds: int
    ) -> bool:
        """
        Mark a link as being synced unless another run holds a live lease.

        Returns:
            True if the lease was acquired
        """
        try:
            self.table.update_item(
                Key={'property_id': property_id, 'partner_name': partner_name},
                UpdateExpression='SET lease_until = :until',
                ConditionExpression=(
                    'attribute_exists(partner_name) AND '
                    '(attribute_not_exists(lease_until) OR lease_until < :now)'
                ),
                ExpressionAttributeValues={
                    ':until': (now + timedelta(seconds=lease_seconds)).isoformat(),
                    ':now': now.isoformat()
                }
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return False
            raise StoreError(f"Failed to acquire link lease: {e}") from e
        return True

    def release_lease(self, property_id: int, partner_name: str) -> None:
        try:
            self.table.update_item(
                Key={'property_id': property_id, 'partner_name': partner_name},
                UpdateExpression='REMOVE lease_until',
                ConditionExpression='attribute_exists(partner_name)'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return
            raise StoreError(f"Failed to release link lease: {e}") from e

    def _item_to_link(self, item: dict) -> ImportLink:
        last_fetch_at = item.get('last_fetch_at')
        return ImportLink(
            property_id=int(item['property_id']),
            partner_name=item['partner_name'],
            feed_url=item['feed_url'],
            is_active=bool(item.get('is_active', True)),
            last_fetch_at=datetime.fromisoformat(last_fetch_at) if last_fetch_at else None,
            last_fetch_status=item.get('last_fetch_status')
        )
