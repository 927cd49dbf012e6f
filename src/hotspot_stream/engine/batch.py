"""
Batch Hotspot Runner
====================

One-shot hotspot analysis over a whole static dataset.

Same clustering and aggregation as a streaming tick, but no window and no
alert policy. Used to produce the reference hotspot tables for a full
crash history.

Outputs (run_csv):
    hotspots_all.csv            every ranked hotspot
    hotspots_top{N}.csv         the N highest ranked hotspots
    events_with_clusters.csv    every event with its cluster id and the
                                rank of its hotspot (empty for noise and
                                clusters below min_cluster_size)
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from hotspot_stream.clustering.dbscan import ClusterLabeling, DensityClusterer
from hotspot_stream.config import Settings
from hotspot_stream.engine.pipeline import TickPipeline, build_pipeline
from hotspot_stream.errors import InvalidParameter, MalformedEvent
from hotspot_stream.hotspots.aggregator import (
    AggregationResult,
    HotspotAggregator,
    size_distribution,
)
from hotspot_stream.models.event import Event, validate_event
from hotspot_stream.models.hotspot import BoundingBox, HotspotSummary
from hotspot_stream.stream.replay import load_events


logger = logging.getLogger(__name__)


HOTSPOT_COLUMNS = [
    name for name in HotspotSummary.model_fields if name not in ("bbox", "member_ids")
] + list(BoundingBox.model_fields)

EVENT_COLUMNS = [
    "event_id",
    "timestamp",
    "latitude",
    "longitude",
    "severity",
    "cluster_id",
    "hotspot_rank",
]


@dataclass(frozen=True)
class BatchResult:
    """
    Result of one batch run.

    Attributes:
        events: Events that were clustered
        labeling: DBSCAN output
        aggregation: Ranked hotspots
        n_rejected: Malformed or duplicate events left out
        duration_ms: Wall-clock duration of clustering + aggregation
    """

    events: Sequence[Event]
    labeling: ClusterLabeling
    aggregation: AggregationResult
    n_rejected: int = 0
    duration_ms: float = 0.0

    @property
    def hotspots(self):
        return self.aggregation.hotspots

    def hotspots_frame(self, top_n: Optional[int] = None) -> pd.DataFrame:
        """Ranked hotspots as a flat table."""
        hotspots = self.aggregation.hotspots if top_n is None else self.aggregation.hotspots[:top_n]
        return pd.DataFrame([h.to_row() for h in hotspots], columns=HOTSPOT_COLUMNS)

    def events_frame(self) -> pd.DataFrame:
        """Events with cluster id and hotspot rank."""
        rank_by_cluster: Dict[int, int] = {h.cluster_id: h.rank for h in self.aggregation.hotspots}
        rows = []
        for event in self.events:
            cluster_id = self.labeling.labels[event.event_id]
            rows.append({
                "event_id": event.event_id,
                "timestamp": pd.to_datetime(event.timestamp, unit="s"),
                "latitude": event.latitude,
                "longitude": event.longitude,
                "severity": event.severity,
                "cluster_id": cluster_id,
                "hotspot_rank": rank_by_cluster.get(cluster_id),
            })
        frame = pd.DataFrame(rows, columns=EVENT_COLUMNS)
        frame["hotspot_rank"] = frame["hotspot_rank"].astype("Int64")
        return frame


class BatchHotspotRunner:
    """
    DBSCAN + aggregation over an entire dataset.

    Example:
        runner = BatchHotspotRunner(eps=0.01, min_points=10)
        result = runner.run_csv("crashes_clean.csv", "output/tables")
        print(result.hotspots[0].severity_sum)
    """

    def __init__(
        self,
        eps: float = 0.01,
        min_points: int = 10,
        min_cluster_size: int = 1,
        metric: str = "euclidean",
        lat_km_per_degree: float = 111.0,
        lon_km_per_degree: float = 95.0,
        pipeline: Optional[TickPipeline] = None,
    ) -> None:
        """
        Initialize batch runner.

        Args:
            eps: DBSCAN radius
            min_points: DBSCAN density threshold
            min_cluster_size: Smallest cluster reported
            metric: "euclidean" or "haversine"
            lat_km_per_degree: Radius scale for latitude
            lon_km_per_degree: Radius scale for longitude
            pipeline: Prebuilt pipeline; overrides the other arguments

        Raises:
            InvalidParameter: On invalid clustering or aggregation values
        """
        self.pipeline = pipeline or TickPipeline(
            DensityClusterer(eps=eps, min_points=min_points, metric=metric),
            HotspotAggregator(
                min_cluster_size=min_cluster_size,
                lat_km_per_degree=lat_km_per_degree,
                lon_km_per_degree=lon_km_per_degree,
            ),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchHotspotRunner":
        """Build a runner from the clustering and aggregation sections."""
        return cls(pipeline=build_pipeline(settings, with_alerts=False))

    def run(self, events: Sequence[Event]) -> BatchResult:
        """
        Cluster and rank a static event set.

        Malformed events and repeated ids (first occurrence kept) are
        logged and left out.
        """
        accepted: List[Event] = []
        seen = set()
        rejected = 0
        for event in events:
            try:
                validate_event(event)
            except MalformedEvent as e:
                rejected += 1
                logger.warning(f"Skipping malformed event: {e}")
                continue
            if event.event_id in seen:
                rejected += 1
                logger.warning(f"Skipping duplicate event id: {event.event_id}")
                continue
            seen.add(event.event_id)
            accepted.append(event)

        started = time.perf_counter()
        output = self.pipeline.run(accepted)
        duration_ms = (time.perf_counter() - started) * 1000.0

        aggregation = output.aggregation
        logger.info(
            f"Batch clustering: {len(accepted)} events → "
            f"{aggregation.n_clusters} clusters, {len(aggregation.hotspots)} hotspots, "
            f"{aggregation.n_noise} noise ({duration_ms:.0f} ms)"
        )

        return BatchResult(
            events=tuple(accepted),
            labeling=output.labeling,
            aggregation=aggregation,
            n_rejected=rejected,
            duration_ms=duration_ms,
        )

    def run_csv(self, path: str, output_dir: str, top_n: int = 50) -> BatchResult:
        """
        Run over a crash file and write the hotspot tables.

        Args:
            path: CSV or JSON-lines input
            output_dir: Directory for the output tables (created if needed)
            top_n: Size of the top-N table

        Returns:
            BatchResult
        """
        if top_n < 1:
            raise InvalidParameter("top_n must be >= 1")

        result = self.run(load_events(path))

        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        result.hotspots_frame().to_csv(out / "hotspots_all.csv", index=False)
        result.hotspots_frame(top_n).to_csv(out / f"hotspots_top{top_n}.csv", index=False)
        result.events_frame().to_csv(out / "events_with_clusters.csv", index=False)
        logger.info(f"Hotspot tables written to {out}")

        for bucket, count in size_distribution(result.hotspots).items():
            logger.info(f"  hotspots with {bucket} crashes: {count}")

        return result
