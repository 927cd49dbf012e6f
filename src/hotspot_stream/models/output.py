"""
Tick Output Model
=================

This module defines the output contract published once per tick.

Output Contract:
    {
        "tick_id": 17,
        "timestamp": 1577836800.0,
        "window_size": 100,
        "n_clusters": 3,
        "n_noise": 41,
        "n_dropped_small": 6,
        "hotspots": [ {HotspotSummary}, ... ],
        "alerts": [ {AlertEvent}, ... ],
        "skipped": null,
        "duration_ms": 4.2
    }

Design Rules:
    - `hotspots` is the full ranked list for the pass (rank 1..K)
    - `alerts` only holds alerts emitted by this pass
    - A skipped tick carries the reason in `skipped` and no hotspots
    - `timestamp` is event time (latest event in the window), not wall clock
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from hotspot_stream.models.alert import AlertEvent
from hotspot_stream.models.hotspot import HotspotSummary


class TickResult(BaseModel):
    """
    Complete result of one tick.

    Attributes:
        tick_id: Monotonic tick counter for this engine instance
        timestamp: Pass timestamp (latest event time in the snapshot)
        window_size: Number of events in the snapshot
        n_clusters: Clusters found before the size filter
        n_noise: Events labelled noise
        n_dropped_small: Events in clusters below min_cluster_size
        hotspots: Ranked hotspot summaries
        alerts: Alerts emitted by this pass
        skipped: Reason the pass did not run, if any
        duration_ms: Wall-clock duration of the clustering pipeline
    """

    tick_id: int = Field(..., ge=0)
    timestamp: float
    window_size: int = Field(..., ge=0)
    n_clusters: int = Field(default=0, ge=0)
    n_noise: int = Field(default=0, ge=0)
    n_dropped_small: int = Field(default=0, ge=0)
    hotspots: List[HotspotSummary] = Field(default_factory=list)
    alerts: List[AlertEvent] = Field(default_factory=list)
    skipped: Optional[str] = None
    duration_ms: float = Field(default=0.0, ge=0.0)

    class Config:
        """Pydantic model configuration."""

        json_schema_extra = {
            "example": {
                "tick_id": 17,
                "timestamp": 1577836800.0,
                "window_size": 100,
                "n_clusters": 1,
                "n_noise": 88,
                "n_dropped_small": 0,
                "hotspots": [
                    {
                        "rank": 1,
                        "cluster_id": 1,
                        "count": 12,
                        "severity_sum": 60.0,
                        "severity_mean": 5.0,
                        "fatalities": 1,
                        "serious_injuries": 20,
                        "centroid_lat": -37.8,
                        "centroid_lon": 145.0,
                        "bbox": {
                            "min_lat": -37.803,
                            "max_lat": -37.797,
                            "min_lon": 144.997,
                            "max_lon": 145.003,
                        },
                        "radius_km": 0.45,
                        "dominant_road": "PRINCES",
                        "road_type_count": 1,
                        "member_ids": [],
                    }
                ],
                "alerts": [],
                "skipped": None,
                "duration_ms": 3.1,
            }
        }
