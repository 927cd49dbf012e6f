"""
Test Configuration
==================

Pytest fixtures and test configuration for the hotspot engine.
"""

import pytest

from hotspot_stream.config import Settings
from hotspot_stream.models.event import Event


BASE_TIME = 1577836800.0  # 2020-01-01T00:00:00Z
BASE_LAT = -37.8
BASE_LON = 145.0


def make_event(
    event_id,
    lat=BASE_LAT,
    lon=BASE_LON,
    timestamp=BASE_TIME,
    severity=1.0,
    **attributes,
):
    """Build an Event with sensible defaults."""
    return Event(
        event_id=event_id,
        timestamp=timestamp,
        latitude=lat,
        longitude=lon,
        severity=severity,
        attributes=attributes,
    )


def dense_cluster(prefix, n, lat=BASE_LAT, lon=BASE_LON, spread=0.003, start=BASE_TIME, severity=1.0):
    """
    n events on a small ring around (lat, lon).

    Every pairwise distance is at most 2 * spread degrees.
    """
    events = []
    offsets = [(0.0, 0.0), (spread, 0.0), (-spread, 0.0), (0.0, spread), (0.0, -spread)]
    for i in range(n):
        dlat, dlon = offsets[i % len(offsets)]
        scale = 1.0 / (1 + i // len(offsets))
        events.append(make_event(
            f"{prefix}{i:03d}",
            lat=lat + dlat * scale,
            lon=lon + dlon * scale,
            timestamp=start + i,
            severity=severity,
        ))
    return events


def make_settings(**sections):
    """
    Settings with a count window and an event-count cadence.

    Keyword arguments replace whole sections, e.g.
    make_settings(window={"max_age_seconds": 60}).
    """
    data = {
        "window": {"max_count": 100},
        "tick": {"every_n_events": 10},
        "clustering": {"eps": 0.01, "min_points": 5},
        "aggregation": {"min_cluster_size": 5},
    }
    data.update(sections)
    return Settings.model_validate(data)


@pytest.fixture
def settings():
    """Default streaming settings."""
    return make_settings()


@pytest.fixture
def scenario_a_events():
    """Twelve crashes within 0.005 degrees plus three isolated crashes."""
    cluster = dense_cluster("C", 12, spread=0.004)
    isolated = [
        make_event("N001", lat=-36.0, lon=146.0, timestamp=BASE_TIME + 100),
        make_event("N002", lat=-38.5, lon=143.0, timestamp=BASE_TIME + 101),
        make_event("N003", lat=-35.0, lon=148.0, timestamp=BASE_TIME + 102),
    ]
    return cluster + isolated


@pytest.fixture
def victoria_csv(tmp_path):
    """A small crash file in the VIC column layout."""
    rows = ["ACCIDENT_NO,ACCIDENT_DATE,ACCIDENT_TIME,LATITUDE,LONGITUDE,"
            "NO_PERSONS_KILLED,NO_PERSONS_INJ_2,NO_PERSONS_INJ_3,ROAD_NAME,ROAD_TYPE"]
    for i in range(12):
        lat = BASE_LAT + (0.001 * (i % 3))
        lon = BASE_LON + (0.001 * (i % 4))
        killed = 1 if i == 0 else 0
        rows.append(
            f"T2020{i:06d},{1 + i:02d}/01/2020,08.{i:02d}.00,{lat},{lon},"
            f"{killed},1,2,PRINCES,HIGHWAY"
        )
    rows.append("T2020999998,15/01/2020,10.00.00,-36.0,146.0,0,0,1,HIGH,STREET")
    rows.append("T2020999999,not a date,,-36.0,146.0,0,0,1,HIGH,STREET")

    path = tmp_path / "crashes.csv"
    path.write_text("\n".join(rows) + "\n")
    return path
