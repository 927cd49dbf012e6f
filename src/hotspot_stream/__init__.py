"""
Hotspot Stream
==============

Streaming crash-hotspot detection over a sliding window of geolocated
road-crash events.

The engine keeps a bounded window of recent crashes, re-clusters it with
DBSCAN on a cadence, ranks the clusters by severity and raises alerts when
a cluster crosses a volume or severity threshold.

Components:
    - clustering: SpatialIndex and DensityClusterer (DBSCAN)
    - stream: SlidingWindowBuffer and event sources
    - hotspots: HotspotAggregator (statistics and ranking)
    - alerts: AlertPolicy (thresholds, matching, dedup, expiry)
    - engine: TickPipeline, StreamingEngine, BatchHotspotRunner
    - sinks: output destinations

Example:
    from hotspot_stream.config import load_config
    from hotspot_stream.engine import StreamingEngine
    from hotspot_stream.sinks import LoggingSink
    from hotspot_stream.stream import FileReplaySource

    settings = load_config("config.yaml")
    engine = StreamingEngine(settings, hotspot_sink=LoggingSink(), alert_sink=LoggingSink())
    await engine.run(FileReplaySource("crashes.csv"))
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
