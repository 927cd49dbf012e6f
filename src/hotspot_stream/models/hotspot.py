"""
Hotspot Models
==============

Per-cluster summary produced by the HotspotAggregator on every pass.

A HotspotSummary is a read-only snapshot. Its ``cluster_id`` is local to
the pass that produced it and is NOT stable across passes; use the
centroid (or the AlertRecord key) to follow a hotspot over time.

Example:
    {
        "rank": 1,
        "cluster_id": 3,
        "count": 42,
        "severity_sum": 118.0,
        "severity_mean": 2.81,
        "fatalities": 2,
        "serious_injuries": 31,
        "centroid_lat": -37.8136,
        "centroid_lon": 144.9631,
        "bbox": {"min_lat": -37.818, "max_lat": -37.809,
                 "min_lon": 144.958, "max_lon": 144.969},
        "radius_km": 0.73,
        "dominant_road": "SWANSTON",
        "road_type_count": 2
    }
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """Axis-aligned extent of a cluster in degrees."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    class Config:
        """Pydantic model configuration."""

        frozen = True


class HotspotSummary(BaseModel):
    """
    Ranked statistics for one retained cluster.

    Attributes:
        rank: 1-based position in the severity ranking
        cluster_id: Pass-local cluster id (positive)
        count: Number of member events
        severity_sum: Total severity of members
        severity_mean: Mean severity of members
        fatalities: Sum of persons killed
        serious_injuries: Sum of persons seriously injured
        centroid_lat: Arithmetic mean latitude (not a geodesic centroid)
        centroid_lon: Arithmetic mean longitude
        bbox: Bounding box of members
        radius_km: Half the bounding box diagonal in kilometres
        dominant_road: Most frequent road name among members, if known
        road_type_count: Number of distinct road types among members
        member_ids: Sorted member event ids
    """

    rank: int = Field(..., ge=1, description="1-based severity rank")
    cluster_id: int = Field(..., ge=1, description="Pass-local cluster id")
    count: int = Field(..., ge=1, description="Number of member events")
    severity_sum: float = Field(..., ge=0.0)
    severity_mean: float = Field(..., ge=0.0)
    fatalities: int = Field(default=0, ge=0)
    serious_injuries: int = Field(default=0, ge=0)
    centroid_lat: float
    centroid_lon: float
    bbox: BoundingBox
    radius_km: float = Field(..., ge=0.0)
    dominant_road: Optional[str] = None
    road_type_count: int = Field(default=0, ge=0)
    member_ids: List[str] = Field(default_factory=list)

    class Config:
        """Pydantic model configuration."""

        frozen = True

    def to_row(self) -> dict:
        """Flatten for CSV export (member ids dropped)."""
        row = self.model_dump(exclude={"bbox", "member_ids"})
        row.update(self.bbox.model_dump())
        return row
