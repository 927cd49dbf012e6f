"""
Sliding Window Buffer
=====================

Bounded, time-ordered store of the most recent crash events.

This module provides the SlidingWindowBuffer class, which acts as the
interface between event ingestion and the clustering passes.

Design Rules:
    - Exactly one eviction policy: max_age (event time) OR max_count (FIFO)
    - Contents are sorted by timestamp; equal timestamps keep arrival order
    - Age is measured against the latest event timestamp, never wall clock,
      so replay and backfill behave like live traffic
    - Single writer; snapshot() is safe from any thread and never aliases
      internal state
    - Does NOT process or modify events
"""

import bisect
import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Set, Tuple

from hotspot_stream.errors import InvalidParameter
from hotspot_stream.models.event import Event


logger = logging.getLogger(__name__)


class SlidingWindowBuffer:
    """
    Thread-safe sliding window of events.

    Attributes:
        max_age: Retention horizon in seconds (age policy)
        max_count: Maximum number of events (count policy)
        evicted_count: Events evicted so far
        duplicate_count: Appends ignored because the id was already live

    Example:
        window = SlidingWindowBuffer(max_count=100)

        # Ingestion path
        evicted = window.append(event)

        # Clustering path (any thread)
        events = window.snapshot()
    """

    def __init__(
        self,
        max_age: Optional[float] = None,
        max_count: Optional[int] = None,
    ) -> None:
        """
        Initialize sliding window.

        Args:
            max_age: Retention horizon in seconds, relative to the latest event
            max_count: Number of most recent events to keep

        Raises:
            InvalidParameter: If neither or both policies are given, or the
                chosen limit is not positive
        """
        if (max_age is None) == (max_count is None):
            raise InvalidParameter("Exactly one of max_age or max_count must be set")
        if max_age is not None and not max_age > 0:
            raise InvalidParameter(f"max_age must be positive, got {max_age}")
        if max_count is not None and (int(max_count) != max_count or max_count < 1):
            raise InvalidParameter(f"max_count must be >= 1, got {max_count}")

        self._max_age = float(max_age) if max_age is not None else None
        self._max_count = int(max_count) if max_count is not None else None

        self._lock = threading.Lock()
        self._events: Deque[Event] = deque()
        # Insertion order, only needed for FIFO eviction
        self._arrivals: Deque[str] = deque()
        self._ids: Set[str] = set()

        self._evicted_count: int = 0
        self._total_appended: int = 0
        self._duplicate_count: int = 0
        self._out_of_order_count: int = 0

    @property
    def policy(self) -> str:
        """Eviction policy name: "max_age" or "max_count"."""
        return "max_age" if self._max_age is not None else "max_count"

    @property
    def max_age(self) -> Optional[float]:
        return self._max_age

    @property
    def max_count(self) -> Optional[int]:
        return self._max_count

    @property
    def size(self) -> int:
        """Current number of events in the window."""
        return len(self._events)

    def __len__(self) -> int:
        return len(self._events)

    @property
    def evicted_count(self) -> int:
        return self._evicted_count

    @property
    def total_appended(self) -> int:
        return self._total_appended

    @property
    def duplicate_count(self) -> int:
        return self._duplicate_count

    @property
    def latest_timestamp(self) -> Optional[float]:
        """Timestamp of the newest event in the window."""
        with self._lock:
            return self._events[-1].timestamp if self._events else None

    def append(self, event: Event) -> List[Event]:
        """
        Insert an event and apply the eviction policy.

        Args:
            event: Event to insert

        Returns:
            Events evicted by this append, oldest first. An event that is
            already older than the retention horizon is inserted and then
            evicted immediately, so it is returned here too.
        """
        with self._lock:
            if event.event_id in self._ids:
                self._duplicate_count += 1
                logger.debug(f"Duplicate event ignored: {event.event_id}")
                return []

            self._insert(event)
            self._ids.add(event.event_id)
            self._total_appended += 1

            if self._max_count is not None:
                self._arrivals.append(event.event_id)
                evicted = self._evict_by_count()
            else:
                evicted = self._evict_by_age()

            self._evicted_count += len(evicted)
            return evicted

    def snapshot(self) -> Tuple[Event, ...]:
        """
        Copy of the current window contents.

        Returns:
            Events sorted by timestamp ascending (ties in arrival order)
        """
        with self._lock:
            return tuple(self._events)

    def clear(self) -> int:
        """
        Remove all events from the window.

        Returns:
            Number of events cleared.
        """
        with self._lock:
            cleared = len(self._events)
            self._events.clear()
            self._arrivals.clear()
            self._ids.clear()
            return cleared

    def metrics(self) -> dict:
        """
        Get buffer metrics for observability.

        Returns:
            Dict with size, policy, limit, appended, evicted, duplicate
            and out-of-order counters
        """
        return {
            "size": self.size,
            "policy": self.policy,
            "limit": self._max_age if self._max_age is not None else self._max_count,
            "total_appended": self._total_appended,
            "evicted_count": self._evicted_count,
            "duplicate_count": self._duplicate_count,
            "out_of_order_count": self._out_of_order_count,
        }

    # =========================================================================
    # Internals (caller holds the lock)
    # =========================================================================

    def _insert(self, event: Event) -> None:
        if not self._events or event.timestamp >= self._events[-1].timestamp:
            self._events.append(event)
            return

        # Late arrival: place after every event with the same or older timestamp
        self._out_of_order_count += 1
        position = bisect.bisect_right(self._events, event.timestamp, key=lambda e: e.timestamp)
        self._events.insert(position, event)

    def _evict_by_count(self) -> List[Event]:
        evicted: List[Event] = []
        while len(self._events) > self._max_count:
            oldest_id = self._arrivals.popleft()
            if self._events[0].event_id == oldest_id:
                removed = self._events.popleft()
            else:
                removed = next(e for e in self._events if e.event_id == oldest_id)
                self._events.remove(removed)
            self._ids.discard(oldest_id)
            evicted.append(removed)
        return evicted

    def _evict_by_age(self) -> List[Event]:
        evicted: List[Event] = []
        latest = self._events[-1].timestamp
        while self._events and latest - self._events[0].timestamp > self._max_age:
            removed = self._events.popleft()
            self._ids.discard(removed.event_id)
            evicted.append(removed)
        return evicted
