"""
Clustering Module
=================

Density-based spatial clustering primitives.

This module provides:
    - SpatialIndex: Immutable radius-query index (brute force or grid)
    - DensityClusterer: DBSCAN over event coordinates
    - ClusterLabeling: Event id -> cluster id mapping for one pass
"""

from hotspot_stream.clustering.spatial_index import (
    BRUTE_FORCE_MAX_POINTS,
    SpatialIndex,
)
from hotspot_stream.clustering.dbscan import NOISE, ClusterLabeling, DensityClusterer


__all__ = [
    "BRUTE_FORCE_MAX_POINTS",
    "SpatialIndex",
    "NOISE",
    "ClusterLabeling",
    "DensityClusterer",
]
