"""
Spatial Index
=============

Radius-neighbour queries over a fixed point set.

This module handles:
    - Building an immutable index over (point_id, lat, lon) triples
    - Answering repeated neighbours-within-radius queries
    - Euclidean distance in degrees (what the crash DBSCAN uses)
      and haversine distance in kilometres

Strategy:
    Up to BRUTE_FORCE_MAX_POINTS points, each query is a vectorised numpy
    scan over all points. Above that, points are bucketed into a uniform
    grid of square cells (in degrees) and a query only scans the cells
    overlapping the query radius. The grid for a given cell size is built
    on first use and reused for every later query.

Example:
    from hotspot_stream.clustering.spatial_index import SpatialIndex

    index = SpatialIndex.build([("a", -37.80, 145.00), ("b", -37.801, 145.0)])
    index.neighbors("a", radius=0.01)   # {"a", "b"}
"""

import logging
import math
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

import numpy as np

from hotspot_stream.errors import InvalidParameter, StateCorruption


logger = logging.getLogger(__name__)


BRUTE_FORCE_MAX_POINTS = 2000
EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = math.pi * EARTH_RADIUS_KM / 180.0

METRICS = ("euclidean", "haversine")

Query = Union[str, Tuple[float, float]]


class SpatialIndex:
    """
    Immutable radius-query index over geographic points.

    Attributes:
        ids: Point ids in build order
        coords: (n, 2) array of [lat, lon] in degrees
        metric: "euclidean" (radius in degrees) or "haversine" (radius in km)
        strategy: "brute_force" or "grid"
    """

    def __init__(
        self,
        ids: Sequence[str],
        coords: np.ndarray,
        metric: str = "euclidean",
        cell_size: Optional[float] = None,
        brute_force_max_points: int = BRUTE_FORCE_MAX_POINTS,
    ) -> None:
        if metric not in METRICS:
            raise InvalidParameter(f"Unknown metric: {metric}")
        if cell_size is not None and cell_size <= 0:
            raise InvalidParameter("cell_size must be positive")

        self.ids: Tuple[str, ...] = tuple(ids)
        self.coords = np.asarray(coords, dtype=float).reshape(-1, 2)
        self.metric = metric
        self._cell_size = cell_size

        if len(self.ids) != len(self.coords):
            raise InvalidParameter("ids and coords must have the same length")

        self._position: Dict[str, int] = {}
        for i, point_id in enumerate(self.ids):
            if point_id in self._position:
                raise StateCorruption(f"Duplicate point id in spatial index: {point_id}")
            self._position[point_id] = i

        self.strategy = "brute_force" if len(self.ids) <= brute_force_max_points else "grid"
        self._grids: Dict[float, Dict[Tuple[int, int], np.ndarray]] = {}

    @classmethod
    def build(
        cls,
        points: Sequence[Tuple[str, float, float]],
        metric: str = "euclidean",
        cell_size: Optional[float] = None,
        brute_force_max_points: int = BRUTE_FORCE_MAX_POINTS,
    ) -> "SpatialIndex":
        """
        Build an index over (point_id, lat, lon) triples.

        Args:
            points: Points to index
            metric: Distance metric for queries
            cell_size: Grid cell size in degrees (defaults to the query radius)
            brute_force_max_points: Largest n answered by a full scan

        Returns:
            SpatialIndex
        """
        ids = [p[0] for p in points]
        coords = np.array([[p[1], p[2]] for p in points], dtype=float).reshape(-1, 2)
        return cls(
            ids,
            coords,
            metric=metric,
            cell_size=cell_size,
            brute_force_max_points=brute_force_max_points,
        )

    def __len__(self) -> int:
        return len(self.ids)

    def position(self, point_id: str) -> int:
        """Build-order position of a point id."""
        return self._position[point_id]

    def neighbors(self, query: Query, radius: float) -> Set[str]:
        """
        Find all indexed points within `radius` of the query (inclusive).

        Args:
            query: An indexed point id, or a (lat, lon) pair
            radius: Degrees for euclidean, kilometres for haversine

        Returns:
            Set of point ids, including the query point itself if indexed
        """
        if isinstance(query, str):
            lat, lon = self.coords[self._position[query]]
        else:
            lat, lon = query
        return {self.ids[i] for i in self.query_positions(lat, lon, radius)}

    def neighbor_positions(self, position: int, radius: float) -> np.ndarray:
        """Neighbour positions (ascending) of the point at `position`."""
        lat, lon = self.coords[position]
        return self.query_positions(lat, lon, radius)

    def query_positions(self, lat: float, lon: float, radius: float) -> np.ndarray:
        """Positions (ascending) of all points within `radius` of (lat, lon)."""
        if radius <= 0:
            raise InvalidParameter("radius must be positive")
        if len(self.ids) == 0:
            return np.empty(0, dtype=np.int64)

        if self.strategy == "brute_force":
            candidates = np.arange(len(self.ids))
        else:
            candidates = self._grid_candidates(lat, lon, radius)
            if candidates.size == 0:
                return candidates

        distances = self._distances(lat, lon, candidates)
        return np.sort(candidates[distances <= radius])

    # =========================================================================
    # Internals
    # =========================================================================

    def _distances(self, lat: float, lon: float, positions: np.ndarray) -> np.ndarray:
        pts = self.coords[positions]
        if self.metric == "euclidean":
            return np.hypot(pts[:, 0] - lat, pts[:, 1] - lon)

        lat1 = math.radians(lat)
        lat2 = np.radians(pts[:, 0])
        dlat = lat2 - lat1
        dlon = np.radians(pts[:, 1] - lon)
        a = np.sin(dlat / 2) ** 2 + math.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
        return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    def _radius_in_degrees(self, lat: float, radius: float) -> Tuple[float, float]:
        """Half-extent (lat, lon) in degrees covering `radius` around `lat`."""
        if self.metric == "euclidean":
            return radius, radius

        lat_span = radius / KM_PER_DEGREE_LAT
        # Longitude degrees shrink towards the poles; widen by the most
        # poleward latitude the query circle can reach.
        extreme_lat = min(89.9, abs(lat) + lat_span)
        cos_lat = max(math.cos(math.radians(extreme_lat)), 1e-6)
        return lat_span, lat_span / cos_lat

    def _grid(self, cell_size: float) -> Dict[Tuple[int, int], np.ndarray]:
        grid = self._grids.get(cell_size)
        if grid is None:
            keys = np.floor(self.coords / cell_size).astype(np.int64)
            buckets: Dict[Tuple[int, int], List[int]] = {}
            for i, (row, col) in enumerate(keys):
                buckets.setdefault((int(row), int(col)), []).append(i)
            grid = {k: np.array(v, dtype=np.int64) for k, v in buckets.items()}
            self._grids[cell_size] = grid
            logger.debug(
                f"Built grid: cell_size={cell_size:g}, "
                f"cells={len(grid)}, points={len(self.ids)}"
            )
        return grid

    def _grid_candidates(self, lat: float, lon: float, radius: float) -> np.ndarray:
        lat_span, lon_span = self._radius_in_degrees(lat, radius)
        cell_size = self._cell_size or lat_span
        grid = self._grid(cell_size)

        row_lo = math.floor((lat - lat_span) / cell_size)
        row_hi = math.floor((lat + lat_span) / cell_size)
        col_lo = math.floor((lon - lon_span) / cell_size)
        col_hi = math.floor((lon + lon_span) / cell_size)

        found = []
        for row in range(row_lo, row_hi + 1):
            for col in range(col_lo, col_hi + 1):
                bucket = grid.get((row, col))
                if bucket is not None:
                    found.append(bucket)
        if not found:
            return np.empty(0, dtype=np.int64)
        return np.concatenate(found)
