"""
File Sinks
==========

Durable output for headless runs.

    JsonlFileSink   one JSON line per tick (hotspots.jsonl) and per
                    alert (alerts.jsonl)
    CsvAlertSink    flat alert log (alerts.csv) appended with pandas

Writes happen on a worker thread so a slow disk never stalls the event
loop. An OSError becomes SinkUnavailable.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Sequence

import pandas as pd

from hotspot_stream.errors import SinkUnavailable
from hotspot_stream.models.alert import AlertEvent
from hotspot_stream.models.output import TickResult


logger = logging.getLogger(__name__)


class JsonlFileSink:
    """
    Append-only JSON-lines sink.

    Example:
        sink = JsonlFileSink("output/stream_logs")
        await sink.publish_hotspots(result)
    """

    def __init__(
        self,
        directory: str,
        hotspots_file: str = "hotspots.jsonl",
        alerts_file: str = "alerts.jsonl",
        include_members: bool = False,
    ) -> None:
        self.directory = Path(directory)
        self.hotspots_path = self.directory / hotspots_file
        self.alerts_path = self.directory / alerts_file
        self.include_members = include_members

    async def publish_hotspots(self, result: TickResult) -> None:
        exclude = None if self.include_members else {"hotspots": {"__all__": {"member_ids"}}}
        line = json.dumps(result.model_dump(mode="json", exclude=exclude))
        await asyncio.to_thread(self._append, self.hotspots_path, [line])

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        if not alerts:
            return
        exclude = None if self.include_members else {"summary": {"member_ids"}}
        lines = [json.dumps(a.model_dump(mode="json", exclude=exclude)) for a in alerts]
        await asyncio.to_thread(self._append, self.alerts_path, lines)

    def _append(self, path: Path, lines: List[str]) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                for line in lines:
                    f.write(line + "\n")
        except OSError as e:
            raise SinkUnavailable(f"Cannot write {path}: {e}") from e


class CsvAlertSink:
    """Append alerts to a CSV log, writing the header once."""

    COLUMNS = [
        "timestamp",
        "kind",
        "alert_record_key",
        "rank",
        "n_crashes",
        "total_severity",
        "avg_severity",
        "n_fatalities",
        "center_lat",
        "center_lon",
        "radius_km",
        "dominant_road",
    ]

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        if not alerts:
            return
        rows = [
            {
                "timestamp": a.timestamp,
                "kind": a.kind.value,
                "alert_record_key": a.alert_record_key,
                "rank": a.summary.rank,
                "n_crashes": a.summary.count,
                "total_severity": a.summary.severity_sum,
                "avg_severity": a.summary.severity_mean,
                "n_fatalities": a.summary.fatalities,
                "center_lat": a.summary.centroid_lat,
                "center_lon": a.summary.centroid_lon,
                "radius_km": a.summary.radius_km,
                "dominant_road": a.summary.dominant_road,
            }
            for a in alerts
        ]
        await asyncio.to_thread(self._append, pd.DataFrame(rows, columns=self.COLUMNS))

    def _append(self, frame: pd.DataFrame) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists()
            frame.to_csv(self.path, mode="a", header=write_header, index=False)
        except OSError as e:
            raise SinkUnavailable(f"Cannot write {self.path}: {e}") from e
