"""
Logging Sink
============

Writes hotspot and alert output to the application log, the headless
equivalent of printing the current hotspot table each pass.
"""

import logging
from typing import Sequence

from hotspot_stream.models.alert import AlertEvent, AlertKind
from hotspot_stream.models.output import TickResult


logger = logging.getLogger(__name__)


class LoggingSink:
    """Log the top hotspots of each tick and every alert."""

    def __init__(self, top_n: int = 5) -> None:
        self.top_n = top_n

    async def publish_hotspots(self, result: TickResult) -> None:
        logger.info(
            f"Tick {result.tick_id}: window={result.window_size} "
            f"hotspots={len(result.hotspots)} noise={result.n_noise} "
            f"({result.duration_ms:.1f} ms)"
        )
        for hotspot in result.hotspots[: self.top_n]:
            road = f" road={hotspot.dominant_road}" if hotspot.dominant_road else ""
            logger.info(
                f"  #{hotspot.rank}: {hotspot.count} crashes, "
                f"severity={hotspot.severity_sum:g}, "
                f"center=({hotspot.centroid_lat:.4f}, {hotspot.centroid_lon:.4f}), "
                f"radius={hotspot.radius_km:.2f} km{road}"
            )

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        for alert in alerts:
            summary = alert.summary
            message = (
                f"{alert.kind.value} hotspot {alert.alert_record_key}: "
                f"{summary.count} crashes, severity={summary.severity_sum:g}, "
                f"center=({summary.centroid_lat:.4f}, {summary.centroid_lon:.4f})"
            )
            if alert.kind == AlertKind.NEW:
                logger.warning(message)
            else:
                logger.info(message)
