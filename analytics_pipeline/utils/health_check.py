"""
Health check utilities for the pipeline's AWS dependencies.
"""

from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import AppConfig
from .dynamodb_client import TTL_ATTRIBUTE, create_resource
from .logging_config import get_logger

logger = get_logger(__name__)


def check_health(config: Optional[AppConfig] = None) -> bool:
    """Check the health of all pipeline dependencies.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(config)

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All pipeline components are healthy')
        else:
            logger.warning('Some pipeline components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(config: Optional[AppConfig] = None, sqs_client=None, dynamodb_client=None) -> Dict[str, Any]:
    """Get detailed health status of the queue and both tables.

    Args:
        config: AppConfig instance, uses default if None
        sqs_client: boto3 SQS client (created from config if None)
        dynamodb_client: boto3 DynamoDB client (created from config if None)

    Returns:
        Dictionary with health status of each component
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    health_status = {}

    # Analytics queue
    if not config.sqs.queue_url:
        health_status['queue'] = {'healthy': False, 'service': 'Amazon SQS', 'error': 'AWS_SQS_URL not configured'}
    else:
        try:
            sqs = sqs_client or boto3.client('sqs', region_name=config.sqs.region)
            attributes = sqs.get_queue_attributes(QueueUrl=config.sqs.queue_url,
                                                  AttributeNames=['FifoQueue', 'RedrivePolicy'])['Attributes']
            health_status['queue'] = {
                'healthy': attributes.get('FifoQueue') == 'true',
                'service': 'Amazon SQS',
                'endpoint': config.sqs.queue_url,
                'redrive_policy': attributes.get('RedrivePolicy'),
            }
        except (ClientError, BotoCoreError) as e:
            health_status['queue'] = {'healthy': False, 'service': 'Amazon SQS', 'error': str(e)}

    if config.store_backend == 'memory':
        health_status['stores'] = {'healthy': True, 'service': 'in-memory stores'}
        return health_status

    dynamodb = dynamodb_client or create_resource(config.dynamodb).meta.client

    # Interim table must have TTL enabled for orphaned queries to expire
    try:
        table = dynamodb.describe_table(TableName=config.dynamodb.interim_table)['Table']
        ttl = dynamodb.describe_time_to_live(TableName=config.dynamodb.interim_table)['TimeToLiveDescription']
        ttl_enabled = ttl.get('TimeToLiveStatus') == 'ENABLED' and ttl.get('AttributeName') == TTL_ATTRIBUTE
        health_status['interim_table'] = {
            'healthy': table.get('TableStatus') == 'ACTIVE' and ttl_enabled,
            'service': 'Amazon DynamoDB',
            'table': config.dynamodb.interim_table,
            'ttl_enabled': ttl_enabled,
        }
    except (ClientError, BotoCoreError) as e:
        health_status['interim_table'] = {'healthy': False, 'service': 'Amazon DynamoDB', 'error': str(e)}

    try:
        table = dynamodb.describe_table(TableName=config.dynamodb.final_table)['Table']
        health_status['final_table'] = {
            'healthy': table.get('TableStatus') == 'ACTIVE',
            'service': 'Amazon DynamoDB',
            'table': config.dynamodb.final_table,
        }
    except (ClientError, BotoCoreError) as e:
        health_status['final_table'] = {'healthy': False, 'service': 'Amazon DynamoDB', 'error': str(e)}

    return health_status


if __name__ == '__main__':
    raise SystemExit(0 if check_health() else 1)
