"""
Correlation store records.

An InterimRecord holds a QueryEvent while it waits for its response; a
CorrelatedRecord is the durable join of both halves. Both are keyed by
correlationId and serialize to flat DynamoDB items.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.json_utils import from_dynamo, to_dynamo
from ..utils.timestamp_utils import iso_week_bucket
from .events import MatchType, QueryEvent, ResponseEvent


class CorrelationState(str, Enum):
    """Lifecycle of a correlationId as seen by the correlator."""
    AWAITING_RESPONSE = 'AWAITING_RESPONSE'
    COMPLETE = 'COMPLETE'
    EXPIRED = 'EXPIRED'
    ORPHANED_RESPONSE = 'ORPHANED_RESPONSE'


@dataclass(frozen=True)
class InterimRecord:
    """A query snapshot waiting for its response until expires_at."""
    correlation_id: str
    snapshot: QueryEvent
    expires_at: int  # epoch seconds, store TTL attribute

    def is_expired(self, now_seconds: float) -> bool:
        return now_seconds >= self.expires_at

    def to_item(self) -> Dict[str, Any]:
        return {
            'correlationId': self.correlation_id,
            'snapshot': to_dynamo(self.snapshot.to_wire()),
            'expiresAt': self.expires_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'InterimRecord':
        item = from_dynamo(item)
        return cls(correlation_id=item['correlationId'],
                   snapshot=QueryEvent.from_wire(item['snapshot']),
                   expires_at=item['expiresAt'])


@dataclass(frozen=True)
class CorrelatedRecord:
    """Final analytics record: one query joined with its response.

    Every field is derived from the two events alone, so rebuilding the record
    from a redelivered pair yields identical content.
    """
    correlation_id: str
    query: str
    query_occurred_at: int
    match_type: MatchType
    match_score: int
    reasoning: str
    response_occurred_at: int
    period_bucket: str
    latency_ms: int
    match_count: Optional[int] = None
    session_id: Optional[str] = None
    performance: Optional[Dict[str, Any]] = None
    query_metadata: Optional[Dict[str, Any]] = None
    response_metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def merge(cls, query: QueryEvent, response: ResponseEvent) -> 'CorrelatedRecord':
        """Join a query with its response.

        The caller is responsible for checking that both share a correlationId
        and that the response does not predate the query.
        """
        return cls(correlation_id=query.correlation_id,
                   query=query.query,
                   query_occurred_at=query.occurred_at,
                   match_type=response.match_type,
                   match_score=response.match_score,
                   reasoning=response.reasoning,
                   response_occurred_at=response.occurred_at,
                   period_bucket=iso_week_bucket(query.occurred_at),
                   latency_ms=response.occurred_at - query.occurred_at,
                   match_count=response.match_count,
                   session_id=query.session_id or response.session_id,
                   performance=response.performance,
                   query_metadata=query.metadata,
                   response_metadata=response.metadata)

    def to_item(self) -> Dict[str, Any]:
        item = {
            'correlationId': self.correlation_id,
            'query': self.query,
            'queryOccurredAt': self.query_occurred_at,
            'matchType': self.match_type.value,
            'matchScore': self.match_score,
            'reasoning': self.reasoning,
            'responseOccurredAt': self.response_occurred_at,
            'periodBucket': self.period_bucket,
            'latencyMs': self.latency_ms,
            'matchCount': self.match_count,
            'sessionId': self.session_id,
            'performance': self.performance,
            'queryMetadata': self.query_metadata,
            'responseMetadata': self.response_metadata,
        }
        # DynamoDB items omit absent attributes rather than storing nulls
        return to_dynamo({k: v for k, v in item.items() if v is not None})

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'CorrelatedRecord':
        item = from_dynamo(item)
        return cls(correlation_id=item['correlationId'],
                   query=item['query'],
                   query_occurred_at=item['queryOccurredAt'],
                   match_type=MatchType(item['matchType']),
                   match_score=item['matchScore'],
                   reasoning=item['reasoning'],
                   response_occurred_at=item['responseOccurredAt'],
                   period_bucket=item['periodBucket'],
                   latency_ms=item['latencyMs'],
                   match_count=item.get('matchCount'),
                   session_id=item.get('sessionId'),
                   performance=item.get('performance'),
                   query_metadata=item.get('queryMetadata'),
                   response_metadata=item.get('responseMetadata'))
