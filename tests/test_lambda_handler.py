"""
Tests for the Lambda entry point.
"""

from unittest.mock import patch

import pytest

from analytics_pipeline import lambda_handler as handler_module
from conftest import query_body, response_body


def sqs_record(message_id, body, receive_count='1'):
    return {'messageId': message_id, 'receiptHandle': f'rh-{message_id}', 'body': body,
            'attributes': {'ApproximateReceiveCount': receive_count}}


@pytest.fixture
def patched_correlator(correlator):
    with patch.object(handler_module, '_correlator', correlator):
        yield correlator


class TestLambdaHandler:
    """SQS event handling with partial batch failures."""

    def test_scenario_c1(self, patched_correlator, final_store, interim_store):
        event = {'Records': [
            sqs_record('m1', query_body('c1', occurred_at=0, query='Python experience?')),
            sqs_record('m2', response_body('c1', occurred_at=50, match_type='full', match_score=95)),
        ]}

        response = handler_module.lambda_handler(event, None)

        assert response == {'batchItemFailures': []}
        assert final_store.get('c1').query == 'Python experience?'
        assert interim_store.get('c1') is None

    def test_scenario_c2_orphan(self, patched_correlator, final_store):
        response = handler_module.lambda_handler({'Records': [sqs_record('m1', response_body('c2'))]}, None)

        assert response == {'batchItemFailures': []}
        assert final_store.get('c2') is None
        assert patched_correlator.stats.orphaned_responses == 1

    def test_reports_failed_messages(self, patched_correlator):
        event = {'Records': [sqs_record('m1', query_body('c1')), sqs_record('m2', '{}')]}

        response = handler_module.lambda_handler(event, None)

        assert response == {'batchItemFailures': [{'itemIdentifier': 'm2'}]}

    def test_unreadable_record_is_reported(self, patched_correlator):
        record = sqs_record('m1', query_body('c1'), receive_count='not-a-number')

        response = handler_module.lambda_handler({'Records': [record]}, None)

        assert response == {'batchItemFailures': [{'itemIdentifier': 'm1'}]}

    def test_empty_event(self, patched_correlator):
        assert handler_module.lambda_handler({}, None) == {'batchItemFailures': []}

    def test_correlator_built_once(self):
        with patch.object(handler_module, '_correlator', None), \
                patch.object(handler_module, 'build_correlator') as build:
            first = handler_module.get_correlator()
            second = handler_module.get_correlator()

        assert first is second
        build.assert_called_once()
