"""
AWS Lambda entry point for the SQS-triggered correlator.

Configure the event source mapping with ``ReportBatchItemFailures`` so only
the messages listed in ``batchItemFailures`` are redelivered.
"""

from typing import Any, Dict, Optional

from .services.correlator import Correlator, DeliveredMessage, build_correlator
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Reused across warm invocations of the same execution environment
_correlator: Optional[Correlator] = None


def get_correlator() -> Correlator:
    global _correlator
    if _correlator is None:
        _correlator = build_correlator()
        logger.info('Initialized correlator')
    return _correlator


def lambda_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Process one SQS batch and report per-message failures.

    Args:
        event: Lambda SQS event with a 'Records' list
        context: Lambda context (unused)

    Returns:
        Partial batch response with the ids of messages to redeliver
    """
    records = event.get('Records') or []
    messages = []
    failures = []
    for record in records:
        try:
            messages.append(DeliveredMessage.from_lambda_record(record))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f'Unreadable SQS record: {e}')
            if isinstance(record, dict) and record.get('messageId'):
                failures.append({'itemIdentifier': record['messageId']})

    response = get_correlator().process_batch(messages).to_lambda_response()
    response['batchItemFailures'].extend(failures)

    logger.info(f'Processed {len(records)} records, {len(response["batchItemFailures"])} failed')
    return response
