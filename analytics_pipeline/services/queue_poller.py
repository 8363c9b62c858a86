"""
Long-polling SQS worker that feeds batches to the correlator.

Used where no Lambda event source mapping is available. Successfully handled
messages are deleted; failed ones are left to reappear after the visibility
timeout, which is how the queue redrives a single message.
"""

import logging
import random
import threading
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.logging_config import get_logger
from .correlator import BatchResult, Correlator, DeliveredMessage, build_correlator

# SQS caps a single ReceiveMessage call at 10 messages
SQS_MAX_MESSAGES = 10


class QueuePollerError(Exception):
    """Custom exception for queue polling errors."""
    pass


class QueuePoller:
    """Receives message batches from SQS and runs them through a correlator."""

    def __init__(self,
                 correlator: Correlator,
                 queue_url: str,
                 sqs_client=None,
                 region: Optional[str] = None,
                 max_messages: int = SQS_MAX_MESSAGES,
                 wait_time_seconds: int = 20,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 60.0,
                 logger: Optional[logging.Logger] = None):
        self.correlator = correlator
        self.queue_url = queue_url
        self.sqs = sqs_client or boto3.client('sqs',
                                              region_name=region,
                                              config=BotoConfig(read_timeout=wait_time_seconds + 10))
        self.max_messages = min(max_messages, SQS_MAX_MESSAGES)
        self.wait_time_seconds = wait_time_seconds
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.logger = logger or get_logger(__name__)

    def poll_once(self) -> BatchResult:
        """
        Receive and process one batch.

        Returns:
            BatchResult for the received messages (empty if none arrived)

        Raises:
            QueuePollerError: If the queue cannot be read
        """
        try:
            response = self.sqs.receive_message(QueueUrl=self.queue_url,
                                                MaxNumberOfMessages=self.max_messages,
                                                WaitTimeSeconds=self.wait_time_seconds,
                                                AttributeNames=['ApproximateReceiveCount'])
        except (ClientError, BotoCoreError) as e:
            raise QueuePollerError(f'Failed to receive messages: {e}')

        messages = [DeliveredMessage.from_sqs_message(m) for m in response.get('Messages', [])]
        if not messages:
            return BatchResult()

        result = self.correlator.process_batch(messages)
        self._delete_handled(messages, result)
        return result

    def run(self, stop_event: Optional[threading.Event] = None, max_batches: Optional[int] = None) -> None:
        """
        Poll until stopped.

        Args:
            stop_event: Set to stop after the current batch
            max_batches: Stop after this many receive calls (no limit if None)
        """
        stop_event = stop_event or threading.Event()
        batches = 0
        attempt = 0
        self.logger.info(f'Polling {self.queue_url}')

        while not stop_event.is_set() and (max_batches is None or batches < max_batches):
            batches += 1
            try:
                self.poll_once()
                attempt = 0
            except QueuePollerError as e:
                # Exponential backoff with jitter
                delay = min(self.retry_delay * (2**attempt) + random.uniform(0, 1), self.max_retry_delay)
                attempt += 1
                self.logger.warning(f'{e}; retrying in {delay:.1f}s')
                stop_event.wait(delay)

        self.logger.info(f'Stopped polling {self.queue_url} (stats: {self.correlator.stats})')

    def _delete_handled(self, messages, result: BatchResult) -> None:
        handled = set(result.handled_message_ids)
        entries = [{'Id': str(i), 'ReceiptHandle': m.receipt_handle}
                   for i, m in enumerate(messages)
                   if m.message_id in handled and m.receipt_handle]
        if not entries:
            return

        try:
            response = self.sqs.delete_message_batch(QueueUrl=self.queue_url, Entries=entries)
        except (ClientError, BotoCoreError) as e:
            # Undeleted messages are redelivered and processed idempotently
            self.logger.warning(f'Failed to delete {len(entries)} handled messages: {e}')
            return

        for failure in response.get('Failed', []):
            self.logger.warning(f'Failed to delete message entry {failure.get("Id")}: {failure.get("Message")}')


if __name__ == '__main__':
    from ..utils.config import config

    if not config.sqs.queue_url:
        raise SystemExit('AWS_SQS_URL is required')

    poller = QueuePoller(build_correlator(config),
                         config.sqs.queue_url,
                         region=config.sqs.region,
                         max_messages=config.correlator.max_batch_size,
                         wait_time_seconds=config.correlator.wait_time_seconds)
    try:
        poller.run()
    except KeyboardInterrupt:
        poller.logger.info('Interrupted, shutting down')
