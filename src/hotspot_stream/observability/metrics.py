"""
Engine Metrics
==============

Operational counters for the streaming engine.

Every non-fatal error class of the engine has a counter here so that
degraded operation is visible on /metrics and in the shutdown log.

Design Rules:
    - Plain counters, no locking (single event loop writer)
    - Exported as a flat dict for JSON serialization
"""

from typing import Optional


class EngineMetrics:
    """Metrics for StreamingEngine observability."""

    __slots__ = (
        "events_ingested",
        "malformed_events",
        "duplicate_events",
        "evicted_events",
        "ticks_requested",
        "ticks_run",
        "ticks_skipped",
        "ticks_coalesced",
        "clustering_timeouts",
        "sink_failures",
        "hotspots_published",
        "alerts_emitted",
        "last_tick_duration_ms",
        "last_tick_timestamp",
    )

    def __init__(self) -> None:
        self.events_ingested: int = 0
        self.malformed_events: int = 0
        self.duplicate_events: int = 0
        self.evicted_events: int = 0
        self.ticks_requested: int = 0
        self.ticks_run: int = 0
        self.ticks_skipped: int = 0
        self.ticks_coalesced: int = 0
        self.clustering_timeouts: int = 0
        self.sink_failures: int = 0
        self.hotspots_published: int = 0
        self.alerts_emitted: int = 0
        self.last_tick_duration_ms: float = 0.0
        self.last_tick_timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


class SourceMetrics:
    """Metrics for event sources (file replay and WebSocket subscription)."""

    __slots__ = (
        "records_read",
        "events_emitted",
        "parse_errors",
        "reconnect_count",
        "last_event_id",
        "last_timestamp",
    )

    def __init__(self) -> None:
        self.records_read: int = 0
        self.events_emitted: int = 0
        self.parse_errors: int = 0
        self.reconnect_count: int = 0
        self.last_event_id: Optional[str] = None
        self.last_timestamp: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "records_read": self.records_read,
            "events_emitted": self.events_emitted,
            "parse_errors": self.parse_errors,
            "reconnect_count": self.reconnect_count,
            "last_event_id": self.last_event_id,
            "last_timestamp": self.last_timestamp,
        }
