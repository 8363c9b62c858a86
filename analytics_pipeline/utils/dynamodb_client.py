"""
DynamoDB-backed correlation stores and table provisioning.
"""

import time
from functools import wraps
from typing import Callable, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..models.records import CorrelatedRecord, InterimRecord
from .config import AppConfig, DynamoDBConfig
from .logging_config import get_logger
from .stores import FinalStore, InMemoryFinalStore, InMemoryInterimStore, InterimStore, StoreError

logger = get_logger(__name__)

KEY_ATTRIBUTE = 'correlationId'
TTL_ATTRIBUTE = 'expiresAt'


def wrap_store_errors(func):
    """Decorator translating AWS client errors into StoreError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f'DynamoDB error in {func.__name__} on {self.table_name}: {e}')
            raise StoreError(f'Failed to {func.__name__} on {self.table_name}: {e}')

    return wrapper


def create_resource(config: DynamoDBConfig):
    """Create a DynamoDB service resource with bounded timeouts."""
    return boto3.resource('dynamodb',
                          region_name=config.region,
                          endpoint_url=config.endpoint_url,
                          config=BotoConfig(connect_timeout=5, read_timeout=10, retries={'max_attempts': 3}))


class DynamoDBInterimStore(InterimStore):
    """Interim store on a DynamoDB table with TTL enabled on expiresAt."""

    def __init__(self, table_name: str, resource, clock: Callable[[], float] = time.time):
        """
        Initialize the interim store.

        Args:
            table_name: Name of the interim table
            resource: boto3 DynamoDB service resource
            clock: Source of the current epoch time in seconds
        """
        self.table_name = table_name
        self.table = resource.Table(table_name)
        self.clock = clock

    @wrap_store_errors
    def put(self, record: InterimRecord) -> None:
        self.table.put_item(Item=record.to_item())
        logger.debug(f'Stored interim record {record.correlation_id} (expires {record.expires_at})')

    @wrap_store_errors
    def get(self, correlation_id: str) -> Optional[InterimRecord]:
        response = self.table.get_item(Key={KEY_ATTRIBUTE: correlation_id}, ConsistentRead=True)
        item = response.get('Item')
        if not item:
            return None

        record = InterimRecord.from_item(item)
        # TTL deletion runs in the background and can lag expiry
        if record.is_expired(self.clock()):
            logger.debug(f'Ignoring expired interim record {correlation_id}')
            return None
        return record

    @wrap_store_errors
    def delete(self, correlation_id: str) -> None:
        self.table.delete_item(Key={KEY_ATTRIBUTE: correlation_id})


class DynamoDBFinalStore(FinalStore):
    """Final store on a DynamoDB table keyed by correlationId."""

    def __init__(self, table_name: str, resource):
        self.table_name = table_name
        self.table = resource.Table(table_name)

    @wrap_store_errors
    def put(self, record: CorrelatedRecord) -> None:
        self.table.put_item(Item=record.to_item())
        logger.debug(f'Stored correlated record {record.correlation_id}')

    @wrap_store_errors
    def get(self, correlation_id: str) -> Optional[CorrelatedRecord]:
        response = self.table.get_item(Key={KEY_ATTRIBUTE: correlation_id}, ConsistentRead=True)
        item = response.get('Item')
        return CorrelatedRecord.from_item(item) if item else None


def ensure_table(client, table_name: str, ttl_attribute: Optional[str] = None) -> str:
    """
    Create a correlationId-keyed table if it doesn't exist.

    Args:
        client: boto3 DynamoDB client
        table_name: Name of the table
        ttl_attribute: Attribute to enable native TTL expiry on, if any

    Returns:
        'exists' or 'created'

    Raises:
        StoreError: If the table cannot be created
    """
    try:
        try:
            client.describe_table(TableName=table_name)
            logger.debug(f'Table {table_name} already exists')
            return 'exists'
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceNotFoundException':
                raise

        client.create_table(TableName=table_name,
                            KeySchema=[{'AttributeName': KEY_ATTRIBUTE, 'KeyType': 'HASH'}],
                            AttributeDefinitions=[{'AttributeName': KEY_ATTRIBUTE, 'AttributeType': 'S'}],
                            BillingMode='PAY_PER_REQUEST')
        logger.info(f'Created table {table_name}, waiting for it to become active...')
        client.get_waiter('table_exists').wait(TableName=table_name)

        if ttl_attribute:
            client.update_time_to_live(TableName=table_name,
                                       TimeToLiveSpecification={'Enabled': True, 'AttributeName': ttl_attribute})
            logger.info(f'Enabled TTL on {table_name}.{ttl_attribute}')
        return 'created'

    except (ClientError, BotoCoreError) as e:
        logger.error(f'Error creating table {table_name}: {e}')
        raise StoreError(f'Failed to create table {table_name}: {e}')


def ensure_tables(config: DynamoDBConfig, client=None) -> Tuple[str, str]:
    """
    Provision the interim (with TTL) and final tables.

    Args:
        config: DynamoDB section of the app config
        client: boto3 DynamoDB client, created from config if None

    Returns:
        (interim status, final status), each 'exists' or 'created'
    """
    client = client or create_resource(config).meta.client
    return (ensure_table(client, config.interim_table, ttl_attribute=TTL_ATTRIBUTE),
            ensure_table(client, config.final_table))


def build_stores(config: Optional[AppConfig] = None) -> Tuple[InterimStore, FinalStore]:
    """Create the interim and final stores for the configured backend."""
    if config is None:
        from .config import config as default_config
        config = default_config

    if config.store_backend == 'memory':
        logger.warning('Using in-memory correlation stores; state is lost on restart')
        return InMemoryInterimStore(), InMemoryFinalStore()
    if config.store_backend != 'dynamodb':
        raise ValueError(f'Unknown store backend: {config.store_backend}')

    resource = create_resource(config.dynamodb)
    logger.info(f'Using DynamoDB tables {config.dynamodb.interim_table} and {config.dynamodb.final_table}')
    return (DynamoDBInterimStore(config.dynamodb.interim_table, resource),
            DynamoDBFinalStore(config.dynamodb.final_table, resource))


if __name__ == '__main__':
    from .config import config as app_config

    interim_status, final_status = ensure_tables(app_config.dynamodb)
    logger.info(f'Interim table {app_config.dynamodb.interim_table}: {interim_status}')
    logger.info(f'Final table {app_config.dynamodb.final_table}: {final_status}')
