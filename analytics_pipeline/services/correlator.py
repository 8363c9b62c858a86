"""
Query/response correlation service.

Joins each QueryEvent with its later ResponseEvent into one CorrelatedRecord.
Queries wait in the interim store until their response arrives or their TTL
lapses. Every write is an idempotent keyed upsert, so redelivered messages and
concurrent workers converge on the same final record without locking.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.events import EventDecodeError, QueryEvent, ResponseEvent, decode_event
from ..models.records import CorrelatedRecord, CorrelationState, InterimRecord
from ..utils.config import AppConfig
from ..utils.dynamodb_client import build_stores
from ..utils.json_utils import dumps_compact
from ..utils.logging_config import get_logger
from ..utils.stores import FinalStore, InterimStore


class CorrelationError(Exception):
    """Custom exception for events that cannot be joined."""
    pass


class DeadLetterError(Exception):
    """Custom exception for dead-letter delivery errors."""
    pass


class MessageOutcome(str, Enum):
    """What processing one delivered message led to."""
    AWAITING_RESPONSE = CorrelationState.AWAITING_RESPONSE.value
    COMPLETE = CorrelationState.COMPLETE.value
    ORPHANED_RESPONSE = CorrelationState.ORPHANED_RESPONSE.value
    DUPLICATE = 'DUPLICATE'
    FAILED = 'FAILED'
    DEAD_LETTERED = 'DEAD_LETTERED'


@dataclass(frozen=True)
class DeliveredMessage:
    """A queue message handed to the correlator."""
    message_id: str
    body: str
    receive_count: int = 1
    receipt_handle: Optional[str] = None

    @classmethod
    def from_lambda_record(cls, record: Dict[str, Any]) -> 'DeliveredMessage':
        """Build from an SQS record in a Lambda event."""
        attributes = record.get('attributes') or {}
        return cls(message_id=record['messageId'],
                   body=record.get('body', ''),
                   receive_count=int(attributes.get('ApproximateReceiveCount', 1)),
                   receipt_handle=record.get('receiptHandle'))

    @classmethod
    def from_sqs_message(cls, message: Dict[str, Any]) -> 'DeliveredMessage':
        """Build from a message returned by the ReceiveMessage API."""
        attributes = message.get('Attributes') or {}
        return cls(message_id=message['MessageId'],
                   body=message.get('Body', ''),
                   receive_count=int(attributes.get('ApproximateReceiveCount', 1)),
                   receipt_handle=message.get('ReceiptHandle'))


@dataclass
class CorrelatorStats:
    """Running counters for observability. Orphans and duplicates are expected, not failures."""
    queries_recorded: int = 0
    completed: int = 0
    orphaned_responses: int = 0
    duplicates: int = 0
    failed: int = 0
    dead_lettered: int = 0


@dataclass
class BatchResult:
    """Per-message outcomes of one batch."""
    outcomes: Dict[str, MessageOutcome] = field(default_factory=dict)

    @property
    def failed_message_ids(self) -> List[str]:
        return [mid for mid, outcome in self.outcomes.items() if outcome == MessageOutcome.FAILED]

    @property
    def handled_message_ids(self) -> List[str]:
        return [mid for mid, outcome in self.outcomes.items() if outcome != MessageOutcome.FAILED]

    def to_lambda_response(self) -> Dict[str, Any]:
        """Partial batch response: only failed messages are redelivered."""
        return {'batchItemFailures': [{'itemIdentifier': mid} for mid in self.failed_message_ids]}


class DeadLetterSink(ABC):
    """Terminal destination for messages that keep failing."""

    @abstractmethod
    def send(self, message: DeliveredMessage, reason: str) -> None:
        """Hand the message over for manual inspection.

        Raises:
            DeadLetterError: If the message could not be handed over
        """


class SQSDeadLetterSink(DeadLetterSink):
    """Dead-letter sink writing to an SQS queue."""

    def __init__(self, queue_url: str, sqs_client=None, region: Optional[str] = None):
        self.queue_url = queue_url
        self.sqs = sqs_client or boto3.client('sqs', region_name=region)

    def send(self, message: DeliveredMessage, reason: str) -> None:
        params = {
            'QueueUrl': self.queue_url,
            'MessageBody': message.body or '{}',
            'MessageAttributes': {
                'sourceMessageId': {'DataType': 'String', 'StringValue': message.message_id},
                'failureReason': {'DataType': 'String', 'StringValue': reason[:1024] or 'unknown'},
            },
        }
        if self.queue_url.endswith('.fifo'):
            params['MessageGroupId'] = 'dead-letter'
            params['MessageDeduplicationId'] = message.message_id
        try:
            self.sqs.send_message(**params)
        except (ClientError, BotoCoreError) as e:
            raise DeadLetterError(f'Failed to dead-letter message {message.message_id}: {e}')


def redrive_policy(dead_letter_target_arn: str, max_receive_count: int) -> str:
    """RedrivePolicy attribute value for the source queue."""
    if max_receive_count < 1:
        raise ValueError(f'max_receive_count must be at least 1, got {max_receive_count}')
    return dumps_compact({'deadLetterTargetArn': dead_letter_target_arn, 'maxReceiveCount': max_receive_count})


class Correlator:
    """Joins query and response events delivered in batches from the queue."""

    def __init__(self,
                 interim_store: InterimStore,
                 final_store: FinalStore,
                 logger: Optional[logging.Logger] = None,
                 window_seconds: int = 3600,
                 max_batch_size: int = 10,
                 max_receive_count: int = 5,
                 dead_letter_sink: Optional[DeadLetterSink] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the correlator.

        Args:
            interim_store: Store holding queries awaiting their response
            final_store: Store receiving completed joins
            logger: Logger for outcomes (module logger if None)
            window_seconds: How long a query waits for its response
            max_batch_size: Expected upper bound on batch size
            max_receive_count: Deliveries after which a failing message is dead-lettered
            dead_letter_sink: Where to send such messages; if None the queue's own
                redrive policy is relied upon
            clock: Source of the current epoch time in seconds
        """
        self.interim_store = interim_store
        self.final_store = final_store
        self.logger = logger or get_logger(__name__)
        self.window_seconds = window_seconds
        self.max_batch_size = max_batch_size
        self.max_receive_count = max_receive_count
        self.dead_letter_sink = dead_letter_sink
        self.clock = clock
        self.stats = CorrelatorStats()
        self._stats_lock = threading.Lock()

    def process_batch(self, messages: Iterable[DeliveredMessage]) -> BatchResult:
        """
        Process a batch, isolating failures to the messages that caused them.

        Args:
            messages: Delivered queue messages

        Returns:
            BatchResult with one outcome per message id
        """
        messages = list(messages)
        if len(messages) > self.max_batch_size:
            self.logger.warning(f'Batch of {len(messages)} exceeds configured maximum of {self.max_batch_size}')

        result = BatchResult()
        for message in messages:
            try:
                outcome = self.process_message(message)
            except Exception as e:
                outcome = self._handle_failure(message, e)
            result.outcomes[message.message_id] = outcome

        failed = len(result.failed_message_ids)
        self.logger.debug(f'Processed batch of {len(messages)} messages ({failed} failed)')
        return result

    def process_message(self, message: DeliveredMessage) -> MessageOutcome:
        """Decode and correlate one message. Raises on failure."""
        event = decode_event(message.body)
        if isinstance(event, QueryEvent):
            return self.handle_query(event)
        return self.handle_response(event)

    def handle_query(self, event: QueryEvent) -> MessageOutcome:
        cid = event.correlation_id
        if self.final_store.get(cid) is not None:
            self.logger.debug(f'Query {cid} already correlated, ignoring redelivery')
            self._count('duplicates')
            return MessageOutcome.DUPLICATE

        expires_at = int(self.clock()) + self.window_seconds
        self.interim_store.put(InterimRecord(correlation_id=cid, snapshot=event, expires_at=expires_at))
        self.logger.debug(f'Query {cid} awaiting response until {expires_at}')
        self._count('queries_recorded')
        return MessageOutcome.AWAITING_RESPONSE

    def handle_response(self, event: ResponseEvent) -> MessageOutcome:
        cid = event.correlation_id
        interim = self.interim_store.get(cid)

        if interim is None:
            if self.final_store.get(cid) is not None:
                self.logger.debug(f'Response {cid} already correlated, ignoring redelivery')
                self._count('duplicates')
                return MessageOutcome.DUPLICATE

            # Expired, never seen, or arrived ahead of its query
            self.logger.info(f'{CorrelationState.ORPHANED_RESPONSE.value}: no pending query for {cid}')
            self._count('orphaned_responses')
            return MessageOutcome.ORPHANED_RESPONSE

        query = interim.snapshot
        if event.occurred_at < query.occurred_at:
            raise CorrelationError(f'Response {cid} occurred at {event.occurred_at}, '
                                   f'before its query at {query.occurred_at}')

        record = CorrelatedRecord.merge(query, event)
        self.final_store.put(record)
        self.interim_store.delete(cid)

        self.logger.info(f'Correlated {cid}: {record.match_type.value} match, score {record.match_score}, '
                         f'latency {record.latency_ms}ms')
        self._count('completed')
        return MessageOutcome.COMPLETE

    def _handle_failure(self, message: DeliveredMessage, error: Exception) -> MessageOutcome:
        reason = f'{type(error).__name__}: {error}'
        permanent = isinstance(error, (EventDecodeError, CorrelationError))

        if message.receive_count >= self.max_receive_count and self.dead_letter_sink is not None:
            try:
                self.dead_letter_sink.send(message, reason)
            except DeadLetterError as e:
                self.logger.error(f'Message {message.message_id} could not be dead-lettered: {e}')
            else:
                self.logger.error(f'Message {message.message_id} dead-lettered after '
                                  f'{message.receive_count} attempts: {reason}')
                self._count('dead_lettered')
                return MessageOutcome.DEAD_LETTERED

        if permanent:
            self.logger.error(f'Rejected message {message.message_id} '
                              f'(attempt {message.receive_count}/{self.max_receive_count}): {reason}')
        else:
            self.logger.warning(f'Failed message {message.message_id} '
                                f'(attempt {message.receive_count}/{self.max_receive_count}): {reason}')
        self._count('failed')
        return MessageOutcome.FAILED

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self.stats, name, getattr(self.stats, name) + 1)


def build_correlator(config: Optional[AppConfig] = None, logger: Optional[logging.Logger] = None) -> Correlator:
    """Create a correlator wired to the configured stores and dead-letter queue."""
    if config is None:
        from ..utils.config import config as default_config
        config = default_config

    interim_store, final_store = build_stores(config)
    dead_letter_sink = None
    if config.correlator.dead_letter_queue_url:
        dead_letter_sink = SQSDeadLetterSink(config.correlator.dead_letter_queue_url, region=config.sqs.region)

    return Correlator(interim_store,
                      final_store,
                      logger=logger,
                      window_seconds=config.correlator.window_seconds,
                      max_batch_size=config.correlator.max_batch_size,
                      max_receive_count=config.correlator.max_receive_count,
                      dead_letter_sink=dead_letter_sink)
