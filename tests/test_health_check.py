"""
Tests for pipeline health checks.
"""

from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from analytics_pipeline.utils.config import load_config
from analytics_pipeline.utils.health_check import get_health_status

QUEUE_URL = 'https://sqs.us-east-1.amazonaws.com/123456789012/analytics.fifo'


def healthy_dynamodb():
    dynamodb = MagicMock()
    dynamodb.describe_table.return_value = {'Table': {'TableStatus': 'ACTIVE'}}
    dynamodb.describe_time_to_live.return_value = {
        'TimeToLiveDescription': {'TimeToLiveStatus': 'ENABLED', 'AttributeName': 'expiresAt'}}
    return dynamodb


def healthy_sqs():
    sqs = MagicMock()
    sqs.get_queue_attributes.return_value = {'Attributes': {'FifoQueue': 'true'}}
    return sqs


class TestHealthStatus:
    """Health of queue and tables."""

    def test_all_healthy(self, monkeypatch):
        monkeypatch.setenv('AWS_SQS_URL', QUEUE_URL)
        monkeypatch.setenv('ANALYTICS_STORE_BACKEND', 'dynamodb')

        status = get_health_status(load_config(), sqs_client=healthy_sqs(), dynamodb_client=healthy_dynamodb())

        assert all(component['healthy'] for component in status.values())
        assert status['interim_table']['ttl_enabled']

    def test_ttl_disabled_is_unhealthy(self, monkeypatch):
        monkeypatch.setenv('AWS_SQS_URL', QUEUE_URL)
        monkeypatch.setenv('ANALYTICS_STORE_BACKEND', 'dynamodb')
        dynamodb = healthy_dynamodb()
        dynamodb.describe_time_to_live.return_value = {'TimeToLiveDescription': {'TimeToLiveStatus': 'DISABLED'}}

        status = get_health_status(load_config(), sqs_client=healthy_sqs(), dynamodb_client=dynamodb)

        assert not status['interim_table']['healthy']
        assert status['final_table']['healthy']

    def test_missing_queue_and_table(self, monkeypatch):
        monkeypatch.delenv('AWS_SQS_URL', raising=False)
        monkeypatch.setenv('ANALYTICS_STORE_BACKEND', 'dynamodb')
        dynamodb = healthy_dynamodb()
        dynamodb.describe_table.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'not found'}}, 'DescribeTable')

        status = get_health_status(load_config(), sqs_client=healthy_sqs(), dynamodb_client=dynamodb)

        assert not status['queue']['healthy']
        assert not status['final_table']['healthy']
        assert 'error' in status['interim_table']
