"""
Density Clusterer
=================

DBSCAN-style density clustering over a set of crash events.

Definitions:
    - Core point: has >= min_points neighbours (itself included) within eps
    - Border point: not core, but within eps of some core point
    - Noise point: reachable by no core point, labelled NOISE (0)

Determinism:
    Points are processed in input order. When a cluster is expanded, the
    neighbours of each core point are visited in ascending event-id order.
    Identical inputs therefore always give identical labelings. Cluster id
    numbering depends on processing order; membership does not depend on
    anything but the input.

Note:
    Every pass clusters the whole window from scratch. Cluster ids are
    pass-local and must not be compared across passes.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from hotspot_stream.clustering.spatial_index import (
    BRUTE_FORCE_MAX_POINTS,
    METRICS,
    SpatialIndex,
)
from hotspot_stream.errors import InvalidParameter
from hotspot_stream.models.event import Event


logger = logging.getLogger(__name__)


NOISE = 0
_UNVISITED = -1


@dataclass(frozen=True)
class ClusterLabeling:
    """
    Result of one clustering pass.

    Attributes:
        labels: Event id -> cluster id (NOISE for unclustered events)
        order: Event ids in input order
        core_ids: Ids of the core points found by the pass
    """

    labels: Mapping[str, int] = field(default_factory=dict)
    order: Tuple[str, ...] = ()
    core_ids: FrozenSet[str] = frozenset()

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, event_id: str) -> int:
        return self.labels[event_id]

    @property
    def n_clusters(self) -> int:
        """Number of distinct positive cluster ids."""
        return len({label for label in self.labels.values() if label != NOISE})

    def noise_ids(self) -> List[str]:
        """Ids labelled noise, in input order."""
        return [event_id for event_id in self.order if self.labels[event_id] == NOISE]

    def groups(self) -> Dict[int, List[str]]:
        """Cluster id -> sorted member ids (noise excluded)."""
        grouped: Dict[int, List[str]] = {}
        for event_id in self.order:
            label = self.labels[event_id]
            if label != NOISE:
                grouped.setdefault(label, []).append(event_id)
        return {label: sorted(members) for label, members in grouped.items()}

    def membership(self) -> FrozenSet[FrozenSet[str]]:
        """Grouping of ids into clusters, independent of id numbering."""
        return frozenset(frozenset(members) for members in self.groups().values())


class DensityClusterer:
    """
    DBSCAN over event coordinates.

    Attributes:
        eps: Neighbourhood radius (degrees for euclidean, km for haversine)
        min_points: Density threshold, the point itself included
        metric: Distance metric passed to the SpatialIndex

    Example:
        clusterer = DensityClusterer(eps=0.01, min_points=10)
        labeling = clusterer.cluster(events)
        print(labeling.n_clusters, len(labeling.noise_ids()))
    """

    def __init__(
        self,
        eps: float,
        min_points: int,
        metric: str = "euclidean",
        cell_size: Optional[float] = None,
        brute_force_max_points: int = BRUTE_FORCE_MAX_POINTS,
    ) -> None:
        """
        Initialize density clusterer.

        Args:
            eps: Neighbourhood radius, must be > 0
            min_points: Minimum neighbourhood size for a core point, must be > 0
            metric: "euclidean" or "haversine"
            cell_size: Optional grid cell size for large windows
            brute_force_max_points: Largest window scanned without a grid

        Raises:
            InvalidParameter: On non-positive eps/min_points or unknown metric
        """
        if eps is None or not eps > 0:
            raise InvalidParameter(f"eps must be positive, got {eps}")
        if min_points is None or isinstance(min_points, bool) or int(min_points) != min_points or min_points <= 0:
            raise InvalidParameter(f"min_points must be a positive integer, got {min_points}")
        if metric not in METRICS:
            raise InvalidParameter(f"Unknown metric: {metric}")

        self.eps = float(eps)
        self.min_points = int(min_points)
        self.metric = metric
        self.cell_size = cell_size
        self.brute_force_max_points = brute_force_max_points

    def cluster(self, events: Sequence[Event]) -> ClusterLabeling:
        """
        Label every event with a cluster id or NOISE.

        Args:
            events: Events to cluster, in processing order

        Returns:
            ClusterLabeling covering every input event
        """
        if not events:
            return ClusterLabeling()

        index = SpatialIndex.build(
            [(e.event_id, e.latitude, e.longitude) for e in events],
            metric=self.metric,
            cell_size=self.cell_size,
            brute_force_max_points=self.brute_force_max_points,
        )
        n = len(index)

        # Rank of each position when sorted by event id
        id_order = np.argsort(np.array(index.ids), kind="stable")
        id_rank = np.empty(n, dtype=np.int64)
        id_rank[id_order] = np.arange(n)

        labels = np.full(n, _UNVISITED, dtype=np.int64)
        enqueued = np.zeros(n, dtype=bool)
        is_core = np.zeros(n, dtype=bool)
        neighbour_cache: Dict[int, np.ndarray] = {}

        def region(position: int) -> np.ndarray:
            found = neighbour_cache.get(position)
            if found is None:
                found = index.neighbor_positions(position, self.eps)
                found = found[np.argsort(id_rank[found], kind="stable")]
                neighbour_cache[position] = found
            return found

        cluster_id = 0
        for seed in range(n):
            if labels[seed] != _UNVISITED:
                continue

            seed_region = region(seed)
            if len(seed_region) < self.min_points:
                labels[seed] = NOISE
                continue

            cluster_id += 1
            labels[seed] = cluster_id
            is_core[seed] = True
            enqueued[seed] = True

            queue = deque()
            for k in seed_region:
                if not enqueued[k]:
                    enqueued[k] = True
                    queue.append(k)

            while queue:
                j = queue.popleft()
                if labels[j] == NOISE:
                    # Non-core point reached from a core point: border
                    labels[j] = cluster_id
                    continue
                if labels[j] != _UNVISITED:
                    continue

                labels[j] = cluster_id
                j_region = region(j)
                if len(j_region) >= self.min_points:
                    is_core[j] = True
                    for k in j_region:
                        if not enqueued[k] and labels[k] in (_UNVISITED, NOISE):
                            enqueued[k] = True
                            queue.append(k)

        result = ClusterLabeling(
            labels={index.ids[i]: int(labels[i]) for i in range(n)},
            order=index.ids,
            core_ids=frozenset(index.ids[i] for i in np.flatnonzero(is_core)),
        )

        logger.debug(
            f"DBSCAN pass: n={n}, eps={self.eps:g}, min_points={self.min_points}, "
            f"clusters={cluster_id}, noise={int(np.sum(labels == NOISE))}, "
            f"index={index.strategy}"
        )
        return result
