"""DynamoDB-backed read access to properties and maintenance blocks."""
import logging
from datetime import date
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.errors import StoreError
from processor.models import MaintenanceBlock, Property

logger = logging.getLogger(__name__)


class PropertyStore:
    """Lookup of properties, mainly by export GUID."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def get(self, property_id: int) -> Optional[Property]:
        try:
            response = self.table.get_item(Key={'property_id': property_id})
        except ClientError as e:
            raise StoreError(f"Failed to fetch property: {e}") from e

        item = response.get('Item')
        return self._item_to_property(item) if item else None

    def find_by_export_guid(self, export_guid: str) -> Optional[Property]:
        """
        Find the property published under an export GUID.

        Args:
            export_guid: Opaque GUID from the export URL

        Returns:
            Property or None if no property uses the GUID
        """
        try:
            response = self.table.scan(FilterExpression=Attr('export_guid').eq(export_guid))
            items = response.get('Items', [])

            while not items and 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=Attr('export_guid').eq(export_guid),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise StoreError(f"Failed to find property by export GUID: {e}") from e

        return self._item_to_property(items[0]) if items else None

    def _item_to_property(self, item: dict) -> Property:
        return Property(
            property_id=int(item['property_id']),
            name=item.get('name', ''),
            timezone=item.get('timezone') or 'UTC',
            export_guid=item.get('export_guid')
        )


class MaintenanceStore:
    """Maintenance blocks keyed by property and maintenance id."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def list_for_export(self, property_id: int) -> List[MaintenanceBlock]:
        """All maintenance blocks of a property ordered by start date."""
        try:
            response = self.table.query(
                KeyConditionExpression=Key('property_id').eq(property_id)
            )
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    KeyConditionExpression=Key('property_id').eq(property_id),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            raise StoreError(f"Failed to fetch maintenance for export: {e}") from e

        blocks = [self._item_to_block(item) for item in items]
        return sorted(blocks, key=lambda block: block.start_date)

    def _item_to_block(self, item: dict) -> MaintenanceBlock:
        return MaintenanceBlock(
            maintenance_id=int(item['maintenance_id']),
            property_id=int(item['property_id']),
            start_date=date.fromisoformat(item['start_date']),
            end_date=date.fromisoformat(item['end_date']),
            description=item.get('description', ''),
            maintenance_type=item.get('maintenance_type')
        )
