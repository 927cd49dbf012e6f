"""
Sinks Module
============

Destinations for tick output:
    - HotspotSink / AlertSink: Protocol contracts
    - MemorySink: in-process record (tests, HTTP endpoints)
    - JsonlFileSink, CsvAlertSink: files under output.directory
    - LoggingSink: application log
    - CompositeSink: fan-out to several of the above
"""

from hotspot_stream.sinks.base import AlertSink, CompositeSink, HotspotSink
from hotspot_stream.sinks.files import CsvAlertSink, JsonlFileSink
from hotspot_stream.sinks.log import LoggingSink
from hotspot_stream.sinks.memory import MemorySink


__all__ = [
    "AlertSink",
    "CompositeSink",
    "CsvAlertSink",
    "HotspotSink",
    "JsonlFileSink",
    "LoggingSink",
    "MemorySink",
]
