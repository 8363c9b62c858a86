"""
Store interfaces for correlation state, with in-memory implementations.

The in-memory stores back local runs and tests. They emulate the DynamoDB
TTL behaviour: expired interim records are invisible to reads and counts, and
``purge_expired`` removes them the way the table's expiry sweeper would.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from ..models.records import CorrelatedRecord, InterimRecord


class StoreError(Exception):
    """Custom exception for correlation store errors."""
    pass


class InterimStore(ABC):
    """Query snapshots awaiting their response, expiring by TTL."""

    @abstractmethod
    def put(self, record: InterimRecord) -> None:
        """Insert or overwrite the record for its correlationId."""

    @abstractmethod
    def get(self, correlation_id: str) -> Optional[InterimRecord]:
        """Return the live record, or None if absent or past its expiry."""

    @abstractmethod
    def delete(self, correlation_id: str) -> None:
        """Remove the record; deleting an absent record is not an error."""


class FinalStore(ABC):
    """Completed query/response joins."""

    @abstractmethod
    def put(self, record: CorrelatedRecord) -> None:
        """Insert or overwrite the record for its correlationId."""

    @abstractmethod
    def get(self, correlation_id: str) -> Optional[CorrelatedRecord]:
        """Return the record, or None if the interaction has not completed."""


class InMemoryInterimStore(InterimStore):
    """Thread-safe in-memory interim store with TTL emulation."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._records: Dict[str, InterimRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: InterimRecord) -> None:
        with self._lock:
            self._records[record.correlation_id] = record

    def get(self, correlation_id: str) -> Optional[InterimRecord]:
        with self._lock:
            record = self._records.get(correlation_id)
        if record is None or record.is_expired(self.clock()):
            return None
        return record

    def delete(self, correlation_id: str) -> None:
        with self._lock:
            self._records.pop(correlation_id, None)

    def purge_expired(self) -> int:
        """Drop expired records. Returns the number removed."""
        now = self.clock()
        with self._lock:
            expired = [cid for cid, record in self._records.items() if record.is_expired(now)]
            for cid in expired:
                del self._records[cid]
        return len(expired)

    def records(self) -> List[InterimRecord]:
        now = self.clock()
        with self._lock:
            return [r for r in self._records.values() if not r.is_expired(now)]

    def __len__(self) -> int:
        return len(self.records())


class InMemoryFinalStore(FinalStore):
    """Thread-safe in-memory final store."""

    def __init__(self):
        self._records: Dict[str, CorrelatedRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: CorrelatedRecord) -> None:
        with self._lock:
            self._records[record.correlation_id] = record

    def get(self, correlation_id: str) -> Optional[CorrelatedRecord]:
        with self._lock:
            return self._records.get(correlation_id)

    def records(self) -> List[CorrelatedRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
