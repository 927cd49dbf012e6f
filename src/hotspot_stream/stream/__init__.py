"""
Stream Module
=============

Event ingestion and windowing components.

This module provides the ingestion layer for the hotspot engine:
    - SlidingWindowBuffer: time-ordered bounded window (age or count policy)
    - FileReplaySource: CSV / JSON-lines replay as an async event stream
    - EventConsumer: WebSocket subscription with reconnection
    - iter_events: async source over an in-memory list

Example:
    from hotspot_stream.stream import FileReplaySource

    source = FileReplaySource("crashes.csv", rate_per_second=20)
    await engine.run(source)
"""

from hotspot_stream.stream.buffer import SlidingWindowBuffer
from hotspot_stream.stream.consumer import EventConsumer
from hotspot_stream.stream.replay import (
    FileReplaySource,
    iter_events,
    load_events,
    record_to_event,
)


__all__ = [
    "EventConsumer",
    "FileReplaySource",
    "SlidingWindowBuffer",
    "iter_events",
    "load_events",
    "record_to_event",
]
