"""
Data Models
===========

Typed data passed through the hotspot engine.

This module re-exports all data models for convenient access.

Models:
    Input:
        - Event: Immutable crash record (frozen dataclass)

    Hotspots:
        - BoundingBox, HotspotSummary: Per-cluster statistics

    Alerts:
        - AlertKind, AlertState: Enums
        - AlertRecord: Alert table entry
        - AlertEvent: Message delivered to the alert sink

    Output:
        - TickResult: Complete per-tick output contract
"""

from hotspot_stream.models.event import Event, severity_score, validate_event
from hotspot_stream.models.hotspot import BoundingBox, HotspotSummary
from hotspot_stream.models.alert import (
    AlertEvent,
    AlertKind,
    AlertRecord,
    AlertState,
    AlertTable,
)
from hotspot_stream.models.output import TickResult

__all__ = [
    # Input
    "Event",
    "severity_score",
    "validate_event",
    # Hotspots
    "BoundingBox",
    "HotspotSummary",
    # Alerts
    "AlertKind",
    "AlertState",
    "AlertRecord",
    "AlertTable",
    "AlertEvent",
    # Output
    "TickResult",
]
