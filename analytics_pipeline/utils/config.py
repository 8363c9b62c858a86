"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class SQSConfig:
    """Configuration for the SQS FIFO analytics queue."""
    queue_url: Optional[str]
    region: str
    access_key_id: Optional[str]
    secret_access_key: Optional[str]
    session_token: Optional[str]
    request_timeout: float
    group_strategy: str  # 'static' or 'correlation'
    max_workers: int


@dataclass
class DynamoDBConfig:
    """Configuration for the interim and final DynamoDB tables."""
    region: str
    interim_table: str
    final_table: str
    endpoint_url: Optional[str]


@dataclass
class CorrelatorConfig:
    """Configuration for the query/response correlator."""
    window_seconds: int
    max_batch_size: int
    max_receive_count: int
    dead_letter_queue_url: Optional[str]
    wait_time_seconds: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    store_backend: str  # 'dynamodb' or 'memory'
    sqs: SQSConfig
    dynamodb: DynamoDBConfig
    correlator: CorrelatorConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')
    region = os.getenv('AWS_REGION', 'us-east-1')

    # SQS configuration
    sqs_config = SQSConfig(queue_url=os.getenv('AWS_SQS_URL') or None,
                           region=region,
                           access_key_id=os.getenv('AWS_ACCESS_KEY_ID') or None,
                           secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY') or None,
                           session_token=os.getenv('AWS_SESSION_TOKEN') or None,
                           request_timeout=float(os.getenv('ANALYTICS_REQUEST_TIMEOUT', '5.0')),
                           group_strategy=os.getenv('ANALYTICS_GROUP_STRATEGY', 'static'),
                           max_workers=int(os.getenv('ANALYTICS_EMITTER_WORKERS', '2')))

    # DynamoDB configuration
    dynamodb_config = DynamoDBConfig(region=os.getenv('DYNAMODB_AWS_REGION', region),
                                     interim_table=os.getenv('ANALYTICS_INTERIM_TABLE', 'analytics-interim'),
                                     final_table=os.getenv('ANALYTICS_FINAL_TABLE', 'analytics-correlated'),
                                     endpoint_url=os.getenv('DYNAMODB_ENDPOINT_URL') or None)

    # Correlator configuration
    correlator_config = CorrelatorConfig(window_seconds=int(os.getenv('CORRELATION_WINDOW_SECONDS', '3600')),
                                         max_batch_size=int(os.getenv('CORRELATION_MAX_BATCH_SIZE', '10')),
                                         max_receive_count=int(os.getenv('CORRELATION_MAX_RECEIVE_COUNT', '5')),
                                         dead_letter_queue_url=os.getenv('AWS_SQS_DLQ_URL') or None,
                                         wait_time_seconds=int(os.getenv('CORRELATION_WAIT_TIME_SECONDS', '20')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     store_backend=os.getenv('ANALYTICS_STORE_BACKEND', 'dynamodb'),
                     sqs=sqs_config,
                     dynamodb=dynamodb_config,
                     correlator=correlator_config)


# Global configuration instance
config = load_config()
