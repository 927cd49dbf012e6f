"""
Event Data Model
================

Internal crash event representation for the ingestion pipeline.

This module defines the typed Event class that is used as the interface
between event sources and the sliding window buffer.

Design Rules:
    - This is the ONLY event format passed to the engine
    - Immutable once created
    - Auxiliary attributes (road name, road type, ...) are carried through
      but never interpreted by clustering
    - Coordinate range checks belong to the source, not the engine
"""

import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from hotspot_stream.errors import MalformedEvent


# Severity weights: killed x 10 + serious injury x 2 + other injury x 1
KILLED_WEIGHT = 10
SERIOUS_INJURY_WEIGHT = 2
OTHER_INJURY_WEIGHT = 1


def severity_score(killed: int = 0, serious_injuries: int = 0, other_injuries: int = 0) -> float:
    """Compute the crash severity score from casualty counts."""
    return float(
        killed * KILLED_WEIGHT
        + serious_injuries * SERIOUS_INJURY_WEIGHT
        + other_injuries * OTHER_INJURY_WEIGHT
    )


@dataclass(frozen=True, slots=True)
class Event:
    """
    Validated crash record.

    This is the canonical internal representation of an event.
    It is immutable (frozen) to prevent accidental modification.

    Attributes:
        event_id: Unique record identifier (e.g. ACCIDENT_NO)
        timestamp: UNIX timestamp of the crash
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        severity: Precomputed severity score (>= 0)
        killed: Number of persons killed
        serious_injuries: Number of persons seriously injured
        other_injuries: Number of persons with other injuries
        attributes: Open bag of auxiliary fields, not compared or hashed
    """

    event_id: str
    timestamp: float
    latitude: float
    longitude: float
    severity: float = 0.0
    killed: int = 0
    serious_injuries: int = 0
    other_injuries: int = 0
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_casualties(
        cls,
        event_id: str,
        timestamp: float,
        latitude: float,
        longitude: float,
        killed: int = 0,
        serious_injuries: int = 0,
        other_injuries: int = 0,
        **attributes: Any,
    ) -> "Event":
        """Build an event whose severity is derived from casualty counts."""
        return cls(
            event_id=event_id,
            timestamp=timestamp,
            latitude=latitude,
            longitude=longitude,
            severity=severity_score(killed, serious_injuries, other_injuries),
            killed=killed,
            serious_injuries=serious_injuries,
            other_injuries=other_injuries,
            attributes=attributes,
        )

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the attribute bag."""
        return (
            f"Event(event_id={self.event_id!r}, "
            f"timestamp={self.timestamp:.0f}, "
            f"lat={self.latitude:.5f}, lon={self.longitude:.5f}, "
            f"severity={self.severity:g})"
        )


def _is_finite_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def validate_event(event: Event) -> None:
    """
    Check that an event can take part in clustering.

    Args:
        event: Event to check

    Raises:
        MalformedEvent: On missing id, non-finite coordinates or timestamp,
            or a negative/non-finite severity or casualty count.
    """
    if event.event_id is None or str(event.event_id).strip() == "":
        raise MalformedEvent("event_id is empty")
    if not _is_finite_number(event.latitude) or not _is_finite_number(event.longitude):
        raise MalformedEvent(
            f"non-finite coordinates for {event.event_id}: "
            f"({event.latitude}, {event.longitude})"
        )
    if not _is_finite_number(event.timestamp):
        raise MalformedEvent(f"non-finite timestamp for {event.event_id}: {event.timestamp}")
    if not _is_finite_number(event.severity) or event.severity < 0:
        raise MalformedEvent(f"invalid severity for {event.event_id}: {event.severity}")
    for name in ("killed", "serious_injuries", "other_injuries"):
        value = getattr(event, name)
        if not _is_finite_number(value) or value < 0:
            raise MalformedEvent(f"invalid {name} for {event.event_id}: {value}")
