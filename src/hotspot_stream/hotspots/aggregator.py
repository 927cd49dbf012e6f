"""
Hotspot Aggregator
==================

Turn a clustering pass into ranked hotspot summaries.

For every positive cluster id with at least ``min_cluster_size`` members:
    - count, severity sum and mean, fatalities, serious injuries
    - centroid: arithmetic mean of lat/lon (a documented simplification,
      not a geodesic centroid)
    - bounding box and approximate radius:
        radius_km = sqrt((dlat * lat_km)^2 + (dlon * lon_km)^2) / 2
      where lat_km / lon_km are kilometres per degree. They differ because
      longitude degrees shrink with latitude; defaults (111, 95) suit
      Victoria, Australia
    - dominant road name and number of distinct road types, when the
      events carry those attributes

Ranking:
    severity_sum desc, count desc, centroid_lat asc, centroid_lon asc,
    smallest member id asc. The last key makes the order total.

Noise is never aggregated. Smaller clusters are dropped and only counted.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from hotspot_stream.clustering.dbscan import NOISE, ClusterLabeling
from hotspot_stream.errors import InvalidParameter, StateCorruption
from hotspot_stream.models.event import Event
from hotspot_stream.models.hotspot import BoundingBox, HotspotSummary


logger = logging.getLogger(__name__)


DEFAULT_LAT_KM_PER_DEGREE = 111.0
DEFAULT_LON_KM_PER_DEGREE = 95.0


@dataclass(frozen=True, slots=True)
class AggregationResult:
    """
    Output of one aggregation.

    Attributes:
        hotspots: Ranked summaries (rank 1..K)
        n_clusters: Positive cluster ids seen before the size filter
        n_noise: Events labelled noise
        n_dropped_small: Events in clusters below min_cluster_size
        dropped_cluster_ids: Cluster ids removed by the size filter
    """

    hotspots: Tuple[HotspotSummary, ...]
    n_clusters: int
    n_noise: int
    n_dropped_small: int
    dropped_cluster_ids: Tuple[int, ...] = ()

    @property
    def n_clustered(self) -> int:
        return sum(h.count for h in self.hotspots)


class HotspotAggregator:
    """
    Computes and ranks per-cluster statistics.

    Example:
        aggregator = HotspotAggregator(min_cluster_size=5)
        result = aggregator.aggregate(events, labeling)
        for hotspot in result.hotspots:
            print(hotspot.rank, hotspot.severity_sum)
    """

    def __init__(
        self,
        min_cluster_size: int = 1,
        lat_km_per_degree: float = DEFAULT_LAT_KM_PER_DEGREE,
        lon_km_per_degree: float = DEFAULT_LON_KM_PER_DEGREE,
        road_name_attribute: str = "road_name",
        road_type_attribute: str = "road_type",
    ) -> None:
        """
        Initialize aggregator.

        Args:
            min_cluster_size: Smallest cluster kept as a hotspot (>= 1)
            lat_km_per_degree: Kilometres per degree of latitude
            lon_km_per_degree: Kilometres per degree of longitude
            road_name_attribute: Event attribute holding the road name
            road_type_attribute: Event attribute holding the road type
        """
        if min_cluster_size < 1:
            raise InvalidParameter("min_cluster_size must be >= 1")
        if lat_km_per_degree <= 0 or lon_km_per_degree <= 0:
            raise InvalidParameter("degree-to-km scale factors must be positive")

        self.min_cluster_size = int(min_cluster_size)
        self.lat_km_per_degree = float(lat_km_per_degree)
        self.lon_km_per_degree = float(lon_km_per_degree)
        self.road_name_attribute = road_name_attribute
        self.road_type_attribute = road_type_attribute

    def aggregate(
        self,
        events: Sequence[Event],
        labeling: ClusterLabeling,
        min_cluster_size: Optional[int] = None,
    ) -> AggregationResult:
        """
        Summarise and rank the clusters of one pass.

        Args:
            events: Events that were clustered
            labeling: Labels produced for exactly these events
            min_cluster_size: Override for the configured size filter

        Returns:
            AggregationResult

        Raises:
            StateCorruption: If labels and events disagree, or ranks are
                not a gap-free 1..K sequence
        """
        min_size = self.min_cluster_size if min_cluster_size is None else int(min_cluster_size)
        if min_size < 1:
            raise InvalidParameter("min_cluster_size must be >= 1")

        if len(events) != len(labeling):
            raise StateCorruption(
                f"Labeling covers {len(labeling)} events, window has {len(events)}"
            )

        members: Dict[int, List[Event]] = {}
        n_noise = 0
        for event in events:
            label = labeling.labels.get(event.event_id)
            if label is None:
                raise StateCorruption(f"Event {event.event_id} missing from labeling")
            if label == NOISE:
                n_noise += 1
            else:
                members.setdefault(label, []).append(event)

        summaries: List[HotspotSummary] = []
        dropped: List[int] = []
        n_dropped_small = 0
        for cluster_id, cluster_events in members.items():
            if len(cluster_events) < min_size:
                dropped.append(cluster_id)
                n_dropped_small += len(cluster_events)
                continue
            summaries.append(self._summarise(cluster_id, cluster_events))

        summaries.sort(key=self._rank_key)
        ranked = tuple(
            summary.model_copy(update={"rank": position})
            for position, summary in enumerate(summaries, start=1)
        )
        check_ranks(ranked)

        return AggregationResult(
            hotspots=ranked,
            n_clusters=len(members),
            n_noise=n_noise,
            n_dropped_small=n_dropped_small,
            dropped_cluster_ids=tuple(sorted(dropped)),
        )

    def _summarise(self, cluster_id: int, events: List[Event]) -> HotspotSummary:
        lats = np.array([e.latitude for e in events], dtype=float)
        lons = np.array([e.longitude for e in events], dtype=float)
        severities = np.array([e.severity for e in events], dtype=float)

        min_lat, max_lat = float(lats.min()), float(lats.max())
        min_lon, max_lon = float(lons.min()), float(lons.max())
        radius_km = float(np.hypot(
            (max_lat - min_lat) * self.lat_km_per_degree,
            (max_lon - min_lon) * self.lon_km_per_degree,
        ) / 2.0)

        severity_sum = float(severities.sum())
        dominant_road, road_type_count = self._road_context(events)

        return HotspotSummary(
            # Provisional rank, replaced after sorting
            rank=1,
            cluster_id=cluster_id,
            count=len(events),
            severity_sum=severity_sum,
            severity_mean=severity_sum / len(events),
            fatalities=int(sum(e.killed for e in events)),
            serious_injuries=int(sum(e.serious_injuries for e in events)),
            centroid_lat=float(lats.mean()),
            centroid_lon=float(lons.mean()),
            bbox=BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lon=min_lon, max_lon=max_lon),
            radius_km=radius_km,
            dominant_road=dominant_road,
            road_type_count=road_type_count,
            member_ids=sorted(e.event_id for e in events),
        )

    def _road_context(self, events: List[Event]) -> Tuple[Optional[str], int]:
        names = Counter(
            str(e.attributes[self.road_name_attribute])
            for e in events
            if e.attributes.get(self.road_name_attribute) not in (None, "")
        )
        dominant = None
        if names:
            dominant = min(names.items(), key=lambda item: (-item[1], item[0]))[0]

        road_types = {
            str(e.attributes[self.road_type_attribute])
            for e in events
            if e.attributes.get(self.road_type_attribute) not in (None, "")
        }
        return dominant, len(road_types)

    @staticmethod
    def _rank_key(summary: HotspotSummary) -> tuple:
        return (
            -summary.severity_sum,
            -summary.count,
            summary.centroid_lat,
            summary.centroid_lon,
            summary.member_ids[0],
        )


def check_ranks(hotspots: Sequence[HotspotSummary]) -> None:
    """
    Verify ranks are exactly 1..K in order.

    Raises:
        StateCorruption: On a duplicate, gap or out-of-order rank
    """
    for expected, hotspot in enumerate(hotspots, start=1):
        if hotspot.rank != expected:
            raise StateCorruption(
                f"Rank sequence broken: expected {expected}, got {hotspot.rank}"
            )


def size_distribution(hotspots: Sequence[HotspotSummary]) -> Dict[str, int]:
    """Count hotspots per size bucket (10-50, 50-100, 100-200, 200+ events)."""
    buckets = {"<10": 0, "10-50": 0, "50-100": 0, "100-200": 0, "200+": 0}
    for hotspot in hotspots:
        if hotspot.count < 10:
            buckets["<10"] += 1
        elif hotspot.count < 50:
            buckets["10-50"] += 1
        elif hotspot.count < 100:
            buckets["50-100"] += 1
        elif hotspot.count < 200:
            buckets["100-200"] += 1
        else:
            buckets["200+"] += 1
    return buckets
