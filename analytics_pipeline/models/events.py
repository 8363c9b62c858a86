"""
Analytics event models exchanged between the edge process and the correlator.

Events are decoded once at the queue boundary into the tagged union
``QueryEvent | ResponseEvent``; everything downstream dispatches on the type.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union

from ..utils.json_utils import loads_object

# Field names used by older edge deployments, mapped to current names
LEGACY_FIELD_ALIASES = {'requestId': 'correlationId', 'timestamp': 'occurredAt'}


class EventDecodeError(Exception):
    """Custom exception for malformed analytics event payloads."""
    pass


class MatchType(str, Enum):
    """How well the answer matched the candidate profile."""
    FULL = 'full'
    PARTIAL = 'partial'
    NONE = 'none'


@dataclass(frozen=True)
class QueryEvent:
    """The first half of an interaction: the question that was asked."""
    correlation_id: str
    occurred_at: int  # epoch milliseconds, emitter clock
    query: str
    session_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    event_type: ClassVar[str] = 'query'

    def to_wire(self) -> Dict[str, Any]:
        data = {
            'eventType': self.event_type,
            'correlationId': self.correlation_id,
            'occurredAt': self.occurred_at,
            'query': self.query,
        }
        if self.session_id is not None:
            data['sessionId'] = self.session_id
        if self.metadata is not None:
            data['metadata'] = self.metadata
        return data

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'QueryEvent':
        return cls(correlation_id=_require_id(data),
                   occurred_at=_require_timestamp(data),
                   query=_require_str(data, 'query'),
                   session_id=_optional_str(data, 'sessionId'),
                   metadata=_optional_dict(data, 'metadata'))


@dataclass(frozen=True)
class ResponseEvent:
    """The second half of an interaction: how the question was answered."""
    correlation_id: str
    occurred_at: int  # epoch milliseconds, emitter clock
    match_type: MatchType
    match_score: int  # 0-100
    reasoning: str
    match_count: Optional[int] = None
    session_id: Optional[str] = None
    performance: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    event_type: ClassVar[str] = 'response'

    def to_wire(self) -> Dict[str, Any]:
        data = {
            'eventType': self.event_type,
            'correlationId': self.correlation_id,
            'occurredAt': self.occurred_at,
            'matchType': self.match_type.value,
            'matchScore': self.match_score,
            'reasoning': self.reasoning,
        }
        if self.match_count is not None:
            data['matchCount'] = self.match_count
        if self.session_id is not None:
            data['sessionId'] = self.session_id
        if self.performance is not None:
            data['performance'] = self.performance
        if self.metadata is not None:
            data['metadata'] = self.metadata
        return data

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'ResponseEvent':
        raw_type = data.get('matchType')
        try:
            match_type = MatchType(raw_type)
        except ValueError:
            raise EventDecodeError(f'Invalid matchType: {raw_type!r}')

        match_score = _require_int(data, 'matchScore')
        if not 0 <= match_score <= 100:
            raise EventDecodeError(f'matchScore out of range 0-100: {match_score}')

        match_count = data.get('matchCount', data.get('vectorMatches'))
        if match_count is not None and (not _is_int(match_count) or match_count < 0):
            raise EventDecodeError(f'Invalid matchCount: {match_count!r}')

        return cls(correlation_id=_require_id(data),
                   occurred_at=_require_timestamp(data),
                   match_type=match_type,
                   match_score=match_score,
                   reasoning=_require_str(data, 'reasoning'),
                   match_count=match_count,
                   session_id=_optional_str(data, 'sessionId'),
                   performance=_optional_dict(data, 'performance'),
                   metadata=_optional_dict(data, 'metadata'))


AnalyticsEvent = Union[QueryEvent, ResponseEvent]

EVENT_TYPES = {QueryEvent.event_type: QueryEvent, ResponseEvent.event_type: ResponseEvent}


def decode_event(body: str) -> AnalyticsEvent:
    """Decode a queue message body into a QueryEvent or ResponseEvent.

    Args:
        body: JSON-encoded event as sent by the emitter

    Returns:
        The decoded event

    Raises:
        EventDecodeError: If the body is not valid JSON or does not describe a known event
    """
    try:
        data = loads_object(body)
    except ValueError as e:
        raise EventDecodeError(f'Invalid event body: {e}')

    for legacy, current in LEGACY_FIELD_ALIASES.items():
        if current not in data and legacy in data:
            data[current] = data[legacy]

    event_type = data.get('eventType')
    event_class = EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if event_class is None:
        raise EventDecodeError(f'Unknown eventType: {event_type!r}')
    return event_class.from_wire(data)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise EventDecodeError(f'Missing or invalid {key}')
    return value


def _require_id(data: Dict[str, Any]) -> str:
    value = _require_str(data, 'correlationId')
    if not value.strip():
        raise EventDecodeError('correlationId must not be empty')
    return value


def _require_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if not _is_int(value):
        raise EventDecodeError(f'Missing or invalid {key}')
    return value


def _require_timestamp(data: Dict[str, Any]) -> int:
    value = _require_int(data, 'occurredAt')
    if value < 0:
        raise EventDecodeError(f'occurredAt must not be negative: {value}')
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise EventDecodeError(f'Invalid {key}')
    return value


def _optional_dict(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = data.get(key)
    if value is not None and not isinstance(value, dict):
        raise EventDecodeError(f'Invalid {key}: expected an object')
    return value
