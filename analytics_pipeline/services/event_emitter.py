"""
Fire-and-forget delivery of analytics events to the SQS FIFO queue.

``emit`` never blocks and never raises: the event is signed and POSTed on a
background worker, and every failure is logged locally. Each call makes
exactly one delivery attempt; redelivery is the queue's concern once a message
has been accepted.
"""

import hashlib
import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set
from urllib.parse import urlencode

import requests

from ..models.events import AnalyticsEvent, MatchType, QueryEvent, ResponseEvent
from ..utils.config import AppConfig
from ..utils.json_utils import dumps_compact
from ..utils.logging_config import get_logger
from ..utils.request_auth import HttpRequest, RequestAuthenticator, SigV4Authenticator, Unconfigured
from ..utils.timestamp_utils import now_millis

SQS_API_VERSION = '2012-11-05'
FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'
STATIC_GROUP_ID = 'analytics'
GROUP_STRATEGIES = ('static', 'correlation')

# SQS accepts up to 128 alphanumeric or punctuation characters for group ids
_VALID_GROUP_ID = re.compile(r'^[A-Za-z0-9!"#$%&\'()*+,\-./:;<=>?@\[\\\]^_`{|}~]{1,128}$')


def deduplication_id(event: AnalyticsEvent) -> str:
    """Deterministic deduplication id: identical logical events collapse to one queue entry."""
    key = f'{event.correlation_id}-{event.event_type}-{event.occurred_at}'
    return hashlib.sha256(key.encode('utf-8')).hexdigest()


def message_group_id(event: AnalyticsEvent, strategy: str) -> str:
    """Ordering lane for an event.

    'static' puts every event in one lane; 'correlation' gives each
    interaction its own lane, which SQS FIFO still orders query before response.
    """
    if strategy == 'static':
        return STATIC_GROUP_ID
    if strategy == 'correlation':
        if _VALID_GROUP_ID.match(event.correlation_id):
            return event.correlation_id
        return hashlib.sha256(event.correlation_id.encode('utf-8')).hexdigest()
    raise ValueError(f'Unknown message group strategy: {strategy}')


@dataclass(frozen=True)
class QueueMessage:
    """An SQS SendMessage request for one event."""
    body: str
    group_id: str
    deduplication_id: str

    def to_form(self) -> str:
        return urlencode([
            ('Action', 'SendMessage'),
            ('Version', SQS_API_VERSION),
            ('MessageBody', self.body),
            ('MessageGroupId', self.group_id),
            ('MessageDeduplicationId', self.deduplication_id),
        ])


class EventEmitter:
    """Builds analytics events and delivers them to the queue in the background."""

    def __init__(self,
                 authenticator: RequestAuthenticator,
                 queue_url: Optional[str],
                 logger: Optional[logging.Logger] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 5.0,
                 group_strategy: str = 'static',
                 executor: Optional[ThreadPoolExecutor] = None,
                 max_workers: int = 2,
                 clock: Callable[[], int] = now_millis):
        """
        Initialize the emitter.

        Args:
            authenticator: Signs each SendMessage request
            queue_url: SQS FIFO queue URL, or None to disable delivery
            logger: Logger for delivery outcomes (module logger if None)
            session: requests session used for delivery (a private one, closed by
                close(), if None)
            timeout: requests timeout in seconds. It applies separately to the
                connect and to each read, so it does not cap the total time of a
                slowly streamed response
            group_strategy: 'static' or 'correlation'
            executor: Executor for background delivery (a private pool if None)
            max_workers: Size of the private pool
            clock: Source of event timestamps in epoch milliseconds
        """
        if group_strategy not in GROUP_STRATEGIES:
            raise ValueError(f'Unknown message group strategy: {group_strategy}')

        self.authenticator = authenticator
        self.queue_url = queue_url
        self.logger = logger or get_logger(__name__)
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.group_strategy = group_strategy
        self.clock = clock
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='analytics-emit')
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._skip_logged = False

    def create_query_event(self,
                           correlation_id: str,
                           query: str,
                           session_id: Optional[str] = None,
                           metadata: Optional[Dict[str, Any]] = None) -> QueryEvent:
        return QueryEvent(correlation_id=correlation_id,
                          occurred_at=self.clock(),
                          query=query,
                          session_id=session_id,
                          metadata=metadata)

    def create_response_event(self,
                              correlation_id: str,
                              match_type: MatchType,
                              match_score: int,
                              reasoning: str,
                              match_count: Optional[int] = None,
                              session_id: Optional[str] = None,
                              performance: Optional[Dict[str, Any]] = None,
                              metadata: Optional[Dict[str, Any]] = None) -> ResponseEvent:
        return ResponseEvent(correlation_id=correlation_id,
                             occurred_at=self.clock(),
                             match_type=MatchType(match_type),
                             match_score=match_score,
                             reasoning=reasoning,
                             match_count=match_count,
                             session_id=session_id,
                             performance=performance,
                             metadata=metadata)

    def build_message(self, event: AnalyticsEvent) -> QueueMessage:
        return QueueMessage(body=dumps_compact(event.to_wire()),
                            group_id=message_group_id(event, self.group_strategy),
                            deduplication_id=deduplication_id(event))

    def emit(self, event: AnalyticsEvent) -> None:
        """Schedule delivery of an event. Never blocks on the network and never raises."""
        if not self.queue_url:
            self._log_skip_once('No analytics queue URL configured, skipping events')
            return

        try:
            message = self.build_message(event)
            future = self._executor.submit(self._deliver, event, message)
        except Exception as e:
            self.logger.error(f'Failed to schedule analytics event: {e}')
            return

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for scheduled deliveries to finish.

        Args:
            timeout: Maximum seconds to wait (no limit if None)

        Returns:
            True if nothing is left pending, False if the timeout expired first
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, wait_for_pending: bool = True) -> None:
        """Stop accepting events and release the worker pool and owned session."""
        self._executor.shutdown(wait=wait_for_pending)
        if self._owns_session:
            self.session.close()

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _log_skip_once(self, message: str) -> None:
        with self._lock:
            if self._skip_logged:
                return
            self._skip_logged = True
        self.logger.warning(message)

    def _deliver(self, event: AnalyticsEvent, message: QueueMessage) -> bool:
        """Sign and send one message. Returns True if the queue accepted it."""
        try:
            request = HttpRequest(method='POST',
                                  url=self.queue_url,
                                  body=message.to_form().encode('utf-8'),
                                  content_type=FORM_CONTENT_TYPE)
            result = self.authenticator.sign(request)
            if isinstance(result, Unconfigured):
                self._log_skip_once(f'Analytics delivery disabled: {result.reason}')
                return False

            response = self.session.post(request.url, data=request.body, headers=result.headers, timeout=self.timeout)
            if not response.ok:
                self.logger.error(f'SQS error [{response.status_code}]: {response.text[:200]}')
                return False

            self.logger.info(f'Analytics event sent: {event.event_type} - {event.correlation_id}')
            return True

        except requests.RequestException as e:
            self.logger.error(f'Failed to send analytics event {event.correlation_id}: {e}')
            return False
        except Exception as e:
            self.logger.error(f'Unexpected error sending analytics event {event.correlation_id}: {e}')
            return False


def build_emitter(config: Optional[AppConfig] = None, logger: Optional[logging.Logger] = None) -> EventEmitter:
    """Create an emitter from configuration.

    Missing credentials or queue URL do not fail here; the emitter logs once
    and skips delivery.
    """
    if config is None:
        from ..utils.config import config as default_config
        config = default_config

    logger = logger or get_logger(__name__)
    authenticator = SigV4Authenticator.from_config(config.sqs)
    if config.sqs.queue_url and authenticator.is_configured:
        logger.info('SQS analytics enabled')
    else:
        logger.info('SQS analytics disabled (missing credentials)')

    return EventEmitter(authenticator,
                        queue_url=config.sqs.queue_url,
                        logger=logger,
                        timeout=config.sqs.request_timeout,
                        group_strategy=config.sqs.group_strategy,
                        max_workers=config.sqs.max_workers)
