"""Shared fixtures: mocked AWS credentials and DynamoDB tables."""
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

RESERVATIONS_TABLE = 'test-reservations'
IMPORT_LINKS_TABLE = 'test-import-links'
PROPERTIES_TABLE = 'test-properties'
MAINTENANCE_TABLE = 'test-maintenance'

FIXED_NOW = datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real AWS accounts."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb():
    """Mock DynamoDB with every table the project uses."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')

        resource.create_table(
            TableName=RESERVATIONS_TABLE,
            KeySchema=[
                {'AttributeName': 'property_id', 'KeyType': 'HASH'},
                {'AttributeName': 'reservation_key', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'property_id', 'AttributeType': 'N'},
                {'AttributeName': 'reservation_key', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        resource.create_table(
            TableName=IMPORT_LINKS_TABLE,
            KeySchema=[
                {'AttributeName': 'property_id', 'KeyType': 'HASH'},
                {'AttributeName': 'partner_name', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'property_id', 'AttributeType': 'N'},
                {'AttributeName': 'partner_name', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        resource.create_table(
            TableName=PROPERTIES_TABLE,
            KeySchema=[{'AttributeName': 'property_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'property_id', 'AttributeType': 'N'}],
            BillingMode='PAY_PER_REQUEST'
        )
        resource.create_table(
            TableName=MAINTENANCE_TABLE,
            KeySchema=[
                {'AttributeName': 'property_id', 'KeyType': 'HASH'},
                {'AttributeName': 'maintenance_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'property_id', 'AttributeType': 'N'},
                {'AttributeName': 'maintenance_id', 'AttributeType': 'N'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield resource


@pytest.fixture
def fixed_clock():
    """Clock frozen at 2025-06-15 09:30 UTC."""
    return lambda: FIXED_NOW
