"""
Tests for correlation store records.
"""

from decimal import Decimal

from analytics_pipeline.models.events import MatchType, QueryEvent, ResponseEvent
from analytics_pipeline.models.records import CorrelatedRecord, InterimRecord

QUERY = QueryEvent('c1', 1707904800000, 'Python experience?', session_id='s1', metadata={'ratio': 0.5})
RESPONSE = ResponseEvent('c1', 1707904800050, MatchType.FULL, 95, 'Five years of Python', match_count=3)


class TestCorrelatedRecord:
    """Merging and serializing final records."""

    def test_merge(self):
        record = CorrelatedRecord.merge(QUERY, RESPONSE)

        assert record.correlation_id == 'c1'
        assert record.query == 'Python experience?'
        assert record.match_type == MatchType.FULL
        assert record.match_score == 95
        assert record.period_bucket == '2024-W07'
        assert record.latency_ms == 50
        assert record.session_id == 's1'

    def test_merge_is_deterministic(self):
        assert CorrelatedRecord.merge(QUERY, RESPONSE).to_item() == CorrelatedRecord.merge(QUERY, RESPONSE).to_item()

    def test_item_omits_absent_fields(self):
        record = CorrelatedRecord.merge(QueryEvent('c2', 0, 'q'), ResponseEvent('c2', 0, MatchType.NONE, 0, ''))

        item = record.to_item()

        assert 'matchCount' not in item
        assert 'queryMetadata' not in item
        assert item['periodBucket'] == '1970-W01'

    def test_item_round_trip_through_dynamodb_types(self):
        item = CorrelatedRecord.merge(QUERY, RESPONSE).to_item()
        assert item['queryMetadata'] == {'ratio': Decimal('0.5')}

        # boto3 returns every number as Decimal
        stored = {k: Decimal(v) if isinstance(v, int) else v for k, v in item.items()}

        assert CorrelatedRecord.from_item(stored) == CorrelatedRecord.merge(QUERY, RESPONSE)


class TestInterimRecord:
    """Interim snapshots and expiry."""

    def test_expiry_boundary(self):
        record = InterimRecord('c1', QUERY, expires_at=100)

        assert not record.is_expired(99.9)
        assert record.is_expired(100)

    def test_item_round_trip(self):
        record = InterimRecord('c1', QUERY, expires_at=1707908400)

        item = record.to_item()
        stored = dict(item, expiresAt=Decimal(item['expiresAt']))

        assert item['snapshot']['eventType'] == 'query'
        assert InterimRecord.from_item(stored) == record
