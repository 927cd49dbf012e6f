"""
Observability Module
====================

Counters exposed on /metrics and logged on shutdown.
"""

from hotspot_stream.observability.metrics import EngineMetrics, SourceMetrics


__all__ = [
    "EngineMetrics",
    "SourceMetrics",
]
