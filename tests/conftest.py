"""
Shared fixtures for pipeline tests.
"""

import json
from unittest.mock import Mock

import pytest

from analytics_pipeline.services.correlator import Correlator, DeliveredMessage
from analytics_pipeline.utils.stores import InMemoryFinalStore, InMemoryInterimStore

# 2024-02-14T10:00:00Z
BASE_TIME = 1707904800


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = BASE_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def query_body(correlation_id, occurred_at=BASE_TIME * 1000, query='Python experience?', **extra):
    return json.dumps({'eventType': 'query', 'correlationId': correlation_id, 'occurredAt': occurred_at,
                       'query': query, **extra})


def response_body(correlation_id, occurred_at=BASE_TIME * 1000 + 50, match_type='full', match_score=95,
                  reasoning='Five years of production Python', **extra):
    return json.dumps({'eventType': 'response', 'correlationId': correlation_id, 'occurredAt': occurred_at,
                       'matchType': match_type, 'matchScore': match_score, 'reasoning': reasoning, **extra})


def message(message_id, body, receive_count=1):
    return DeliveredMessage(message_id=message_id, body=body, receive_count=receive_count,
                            receipt_handle=f'rh-{message_id}')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def interim_store(clock):
    return InMemoryInterimStore(clock=clock)


@pytest.fixture
def final_store():
    return InMemoryFinalStore()


@pytest.fixture
def logger():
    return Mock()


@pytest.fixture
def correlator(interim_store, final_store, logger, clock):
    return Correlator(interim_store, final_store, logger=logger, window_seconds=600, max_receive_count=3, clock=clock)
