"""
In-Memory Sink
==============

Keeps every published tick and alert. Used by tests and by the service
to back the /hotspots and /alerts endpoints.
"""

from collections import deque
from typing import Deque, List, Optional, Sequence

from hotspot_stream.models.alert import AlertEvent
from hotspot_stream.models.output import TickResult


class MemorySink:
    """
    Bounded in-memory record of published output.

    Attributes:
        results: Published tick results, oldest first
        alerts: Published alerts, oldest first
    """

    def __init__(self, max_results: Optional[int] = None, max_alerts: Optional[int] = None) -> None:
        self.results: Deque[TickResult] = deque(maxlen=max_results)
        self.alerts: Deque[AlertEvent] = deque(maxlen=max_alerts)

    async def publish_hotspots(self, result: TickResult) -> None:
        self.results.append(result)

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        self.alerts.extend(alerts)

    @property
    def latest(self) -> Optional[TickResult]:
        return self.results[-1] if self.results else None

    def recent_alerts(self, limit: int = 50) -> List[AlertEvent]:
        """Most recent alerts, newest last."""
        if limit <= 0:
            return []
        return list(self.alerts)[-limit:]
