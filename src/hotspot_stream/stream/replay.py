"""
File Replay Source
==================

Replay crash records from a CSV or JSON-lines file as an event stream.

Column Mapping (VIC crash schema, generic names also accepted):
    ACCIDENT_NO       / event_id          -> Event.event_id
    ACCIDENT_DATE +
    ACCIDENT_TIME     / timestamp         -> Event.timestamp (UNIX seconds, UTC)
    LATITUDE          / latitude          -> Event.latitude
    LONGITUDE         / longitude         -> Event.longitude
    severity_score    / severity          -> Event.severity
    NO_PERSONS_KILLED / killed            -> Event.killed
    NO_PERSONS_INJ_2  / serious_injuries  -> Event.serious_injuries
    NO_PERSONS_INJ_3  / other_injuries    -> Event.other_injuries

Every other column is kept, lower-cased, in Event.attributes
(ROAD_NAME -> road_name, ROAD_TYPE -> road_type, SPEED_ZONE -> speed_zone).

When no severity column is present it is derived from the casualty counts.

Design Rules:
    - Records are replayed in timestamp order
    - Unparseable records (no id, unreadable timestamp or numbers) are
      counted and skipped here
    - Missing coordinates are passed through as NaN so the engine rejects
      and counts them
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from hotspot_stream.errors import InvalidParameter, MalformedEvent
from hotspot_stream.models.event import Event, severity_score
from hotspot_stream.observability.metrics import SourceMetrics


logger = logging.getLogger(__name__)


# Canonical field -> accepted column names, in lookup order
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "event_id": ("event_id", "ACCIDENT_NO"),
    "timestamp": ("timestamp",),
    "date": ("ACCIDENT_DATE", "ACCIDENT_DATE_PARSED", "date"),
    "time": ("ACCIDENT_TIME", "ACCIDENT_TIME_PARSED", "time"),
    "latitude": ("latitude", "LATITUDE"),
    "longitude": ("longitude", "LONGITUDE"),
    "severity": ("severity", "severity_score"),
    "killed": ("killed", "NO_PERSONS_KILLED"),
    "serious_injuries": ("serious_injuries", "NO_PERSONS_INJ_2"),
    "other_injuries": ("other_injuries", "NO_PERSONS_INJ_3"),
}

_MAPPED_COLUMNS = {name for names in COLUMN_ALIASES.values() for name in names}

_DATE_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


# =============================================================================
# Record Parsing
# =============================================================================

def read_records(path: str) -> pd.DataFrame:
    """
    Load a CSV (.csv) or JSON-lines (.jsonl, .ndjson, .json) file.

    Raises:
        InvalidParameter: If the file is missing or of an unknown type
    """
    file_path = Path(path)
    if not file_path.exists():
        raise InvalidParameter(f"Input file not found: {path}")

    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(file_path, dtype={"ACCIDENT_NO": str, "event_id": str})
    if suffix in (".jsonl", ".ndjson", ".json"):
        return pd.read_json(
            file_path,
            lines=True,
            dtype={"ACCIDENT_NO": str, "event_id": str},
            convert_dates=False,
            keep_default_dates=False,
        )

    raise InvalidParameter(f"Unsupported input format: {suffix} (expected .csv or .jsonl)")


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NaT:
        return True
    return isinstance(value, float) and math.isnan(value)


def _lookup(record: Mapping[str, Any], field_name: str) -> Any:
    for column in COLUMN_ALIASES[field_name]:
        value = record.get(column)
        if not _is_missing(value):
            return value
    return None


def _to_float(value: Any) -> float:
    if value is None:
        return float("nan")
    return float(value)


def _to_count(record: Mapping[str, Any], field_name: str) -> int:
    value = _lookup(record, field_name)
    if value is None:
        return 0
    return int(float(value))


def parse_timestamp(record: Mapping[str, Any]) -> float:
    """
    UNIX timestamp of a record.

    A numeric ``timestamp`` column is taken as seconds; otherwise the
    date (day-first or ISO) and optional time columns are combined.

    Raises:
        MalformedEvent: If no readable timestamp is present
    """
    value = _lookup(record, "timestamp")
    if value is not None:
        if isinstance(value, (int, float, np.number)) and not isinstance(value, bool):
            return float(value)
        try:
            return pd.Timestamp(str(value)).timestamp()
        except ValueError as e:
            raise MalformedEvent(f"unreadable timestamp {value!r}") from e

    date = _lookup(record, "date")
    if date is None:
        raise MalformedEvent("record has no timestamp or date")

    text = str(date).strip()
    time_of_day = _lookup(record, "time")
    if time_of_day is not None:
        text = f"{text} {str(time_of_day).strip().replace('.', ':')}"

    for fmt in _DATE_FORMATS:
        try:
            return pd.to_datetime(text, format=fmt).timestamp()
        except ValueError:
            continue

    raise MalformedEvent(f"unreadable date/time {text!r}")


def record_to_event(record: Mapping[str, Any]) -> Event:
    """
    Convert one raw record to an Event.

    Raises:
        MalformedEvent: If the record cannot be parsed
    """
    event_id = _lookup(record, "event_id")
    if event_id is None or str(event_id).strip() == "":
        raise MalformedEvent("record has no event id")

    try:
        latitude = _to_float(_lookup(record, "latitude"))
        longitude = _to_float(_lookup(record, "longitude"))
        killed = _to_count(record, "killed")
        serious = _to_count(record, "serious_injuries")
        other = _to_count(record, "other_injuries")
        severity = _lookup(record, "severity")
        severity = severity_score(killed, serious, other) if severity is None else float(severity)
    except (TypeError, ValueError) as e:
        raise MalformedEvent(f"unreadable numeric field in {event_id}: {e}") from e

    attributes = {
        str(column).lower(): (value.item() if isinstance(value, np.generic) else value)
        for column, value in record.items()
        if column not in _MAPPED_COLUMNS and not _is_missing(value)
    }

    return Event(
        event_id=str(event_id).strip(),
        timestamp=parse_timestamp(record),
        latitude=latitude,
        longitude=longitude,
        severity=severity,
        killed=killed,
        serious_injuries=serious,
        other_injuries=other,
        attributes=attributes,
    )


def frame_to_events(
    frame: pd.DataFrame,
    metrics: Optional[SourceMetrics] = None,
) -> List[Event]:
    """
    Convert a record frame to events sorted by timestamp.

    Unparseable records are logged, counted on ``metrics`` and skipped.
    """
    events: List[Event] = []
    for record in frame.to_dict(orient="records"):
        if metrics is not None:
            metrics.records_read += 1
        try:
            events.append(record_to_event(record))
        except MalformedEvent as e:
            if metrics is not None:
                metrics.parse_errors += 1
            logger.warning(f"Skipping unparseable record: {e}")

    # Stable: equal timestamps keep file order
    events.sort(key=lambda e: e.timestamp if math.isfinite(e.timestamp) else math.inf)
    return events


def load_events(path: str, metrics: Optional[SourceMetrics] = None) -> List[Event]:
    """Read a file and return its events in timestamp order."""
    frame = read_records(path)
    logger.info(f"Loaded {len(frame)} records from {path}")
    return frame_to_events(frame, metrics)


# =============================================================================
# Sources
# =============================================================================

async def iter_events(events: Iterable[Event]) -> AsyncIterator[Event]:
    """Async source over an in-memory sequence, yielding to the loop per event."""
    for event in events:
        yield event
        await asyncio.sleep(0)


class FileReplaySource:
    """
    Replays a crash file as an async event stream.

    Attributes:
        path: Input file
        rate_per_second: Emission rate (None = as fast as the loop allows)
        max_messages: Stop after this many events (None = whole file)
        metrics: Records read, parse errors, events emitted

    Example:
        source = FileReplaySource("crashes.csv", rate_per_second=20)
        await engine.run(source)
    """

    def __init__(
        self,
        path: str,
        rate_per_second: Optional[float] = None,
        max_messages: Optional[int] = None,
    ) -> None:
        if rate_per_second is not None and rate_per_second <= 0:
            raise InvalidParameter("rate_per_second must be positive")
        if max_messages is not None and max_messages < 1:
            raise InvalidParameter("max_messages must be >= 1")

        self.path = path
        self.rate_per_second = rate_per_second
        self.max_messages = max_messages
        self.metrics = SourceMetrics()
        self._stop_event: asyncio.Event = asyncio.Event()

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._replay()

    async def _replay(self) -> AsyncIterator[Event]:
        events = load_events(self.path, self.metrics)
        if self.max_messages is not None:
            events = events[: self.max_messages]

        delay = 1.0 / self.rate_per_second if self.rate_per_second else 0.0
        logger.info(
            f"Replaying {len(events)} events from {self.path}"
            + (f" at {self.rate_per_second}/s" if self.rate_per_second else "")
        )

        for event in events:
            if self._stop_event.is_set():
                break

            yield event
            self.metrics.events_emitted += 1
            self.metrics.last_event_id = event.event_id
            self.metrics.last_timestamp = event.timestamp

            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(0)

        logger.info(
            f"Replay finished: {self.metrics.events_emitted} events, "
            f"{self.metrics.parse_errors} unparseable records"
        )

    async def stop(self) -> None:
        """Stop replay after the current event."""
        self._stop_event.set()
