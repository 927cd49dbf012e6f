"""
Hotspots Module
===============

Aggregation of clustering output into ranked hotspot summaries.
"""

from hotspot_stream.hotspots.aggregator import (
    AggregationResult,
    HotspotAggregator,
    check_ranks,
    size_distribution,
)

__all__ = [
    "AggregationResult",
    "HotspotAggregator",
    "check_ranks",
    "size_distribution",
]
