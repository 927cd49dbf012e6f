"""
Alert Models
============

State kept by the AlertPolicy and the alert messages it emits.

Record Lifecycle:
    ACTIVE   → ACTIVE     matched this pass
    ACTIVE   → EXPIRING   missed this pass
    EXPIRING → ACTIVE     matched again (re-armed, same key)
    EXPIRING → REMOVED    missed for more than grace_period_passes passes

Raw cluster ids are not stable across passes, so a record is keyed by its
rounded first centroid plus the time bucket of the pass that created it.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field

from hotspot_stream.models.hotspot import HotspotSummary


class AlertKind(str, Enum):
    """
    Kind of alert delivered to the alert sink.

    Attributes:
        NEW: First time this hotspot crossed a threshold
        CONTINUING: A known hotspot matched again
    """

    NEW = "NEW"
    CONTINUING = "CONTINUING"


class AlertState(str, Enum):
    """Lifecycle state of an AlertRecord."""

    ACTIVE = "ACTIVE"
    EXPIRING = "EXPIRING"
    REMOVED = "REMOVED"


class AlertRecord(BaseModel):
    """
    One tracked hotspot in the alert table.

    Attributes:
        key: Stable identity (rounded centroid + first-seen time bucket)
        state: Lifecycle state
        centroid_lat: Centroid latitude of the latest match
        centroid_lon: Centroid longitude of the latest match
        summary: Latest matched summary snapshot
        first_seen: Pass timestamp when the record was created
        last_seen: Pass timestamp of the latest match
        last_emitted: Pass timestamp of the latest emitted alert
        alert_count: Number of passes this record was matched (incl. creation)
        missed_passes: Consecutive passes without a match
    """

    key: str
    state: AlertState = AlertState.ACTIVE
    centroid_lat: float
    centroid_lon: float
    summary: HotspotSummary
    first_seen: float
    last_seen: float
    last_emitted: float
    alert_count: int = Field(default=1, ge=1)
    missed_passes: int = Field(default=0, ge=0)

    class Config:
        """Pydantic model configuration."""

        use_enum_values = False  # Keep enum as enum, not string


# Alert table: record key -> record
AlertTable = Dict[str, AlertRecord]


class AlertEvent(BaseModel):
    """
    Alert message delivered to the alert sink.

    Attributes:
        kind: NEW or CONTINUING
        summary: Hotspot that triggered the alert
        alert_record_key: Key of the tracking AlertRecord
        timestamp: Pass timestamp
    """

    kind: AlertKind
    summary: HotspotSummary
    alert_record_key: str
    timestamp: float
