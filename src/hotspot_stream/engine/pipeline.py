"""
Tick Pipeline Graph
===================

LangGraph state machine for one clustering pass.

LangGraph is used for CONTROL FLOW only: every node is deterministic and
there are no LLM calls.

Graph Structure:
    START → cluster → aggregate → alert → END     (streaming)
    START → cluster → aggregate → END             (batch, no policy)

    cluster:   DensityClusterer over the window snapshot
    aggregate: HotspotAggregator over the labeling
    alert:     AlertPolicy against the current alert table

Design Rules:
    - The graph runs in a worker thread over an immutable snapshot
    - Nodes never mutate their inputs; the engine commits the returned
      alert table only after the whole pass succeeded
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict

from langgraph.graph import StateGraph, END

from hotspot_stream.alerts.policy import AlertPolicy, AlertThresholds
from hotspot_stream.clustering.dbscan import ClusterLabeling, DensityClusterer
from hotspot_stream.config import Settings
from hotspot_stream.errors import StateCorruption
from hotspot_stream.hotspots.aggregator import AggregationResult, HotspotAggregator
from hotspot_stream.models.alert import AlertEvent, AlertTable
from hotspot_stream.models.event import Event


logger = logging.getLogger(__name__)


class TickGraphState(TypedDict):
    """
    State passed through the pipeline graph.

    Attributes:
        events: Window snapshot for this pass
        now: Pass timestamp (event time)
        alert_table: Alert table before the pass
        labeling: DBSCAN output
        aggregation: Ranked hotspots
        alerts: Alerts emitted by the pass
        updated_table: Alert table after the pass
    """
    events: Tuple[Event, ...]
    now: float
    alert_table: AlertTable
    labeling: Optional[ClusterLabeling]
    aggregation: Optional[AggregationResult]
    alerts: List[AlertEvent]
    updated_table: AlertTable


@dataclass(frozen=True)
class PipelineOutput:
    """Result of one pipeline run."""

    labeling: ClusterLabeling
    aggregation: AggregationResult
    alerts: Tuple[AlertEvent, ...]
    alert_table: AlertTable


class TickPipeline:
    """
    Cluster → aggregate → alert, as a compiled LangGraph workflow.

    Example:
        pipeline = TickPipeline(clusterer, aggregator, policy)
        output = pipeline.run(snapshot, alert_table, now=snapshot[-1].timestamp)
    """

    def __init__(
        self,
        clusterer: DensityClusterer,
        aggregator: HotspotAggregator,
        policy: Optional[AlertPolicy] = None,
    ) -> None:
        """
        Initialize the pipeline graph.

        Args:
            clusterer: Configured DBSCAN clusterer
            aggregator: Configured hotspot aggregator
            policy: Alert policy (None skips the alert node)
        """
        self.clusterer = clusterer
        self.aggregator = aggregator
        self.policy = policy

        self._graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(TickGraphState)

        workflow.add_node("cluster", self._cluster_node)
        workflow.add_node("aggregate", self._aggregate_node)

        workflow.set_entry_point("cluster")
        workflow.add_edge("cluster", "aggregate")

        if self.policy is not None:
            workflow.add_node("alert", self._alert_node)
            workflow.add_edge("aggregate", "alert")
            workflow.add_edge("alert", END)
        else:
            workflow.add_edge("aggregate", END)

        return workflow.compile()

    def _cluster_node(self, state: TickGraphState) -> Dict[str, Any]:
        return {"labeling": self.clusterer.cluster(state["events"])}

    def _aggregate_node(self, state: TickGraphState) -> Dict[str, Any]:
        labeling = state.get("labeling")
        if labeling is None:
            raise StateCorruption("aggregate reached without a labeling")
        return {"aggregation": self.aggregator.aggregate(state["events"], labeling)}

    def _alert_node(self, state: TickGraphState) -> Dict[str, Any]:
        aggregation = state.get("aggregation")
        if aggregation is None:
            raise StateCorruption("alert reached without an aggregation")

        alerts, table = self.policy.evaluate(
            aggregation.hotspots, state["alert_table"], state["now"]
        )
        return {"alerts": alerts, "updated_table": table}

    def run(
        self,
        events: Sequence[Event],
        alert_table: Optional[AlertTable] = None,
        now: float = 0.0,
    ) -> PipelineOutput:
        """
        Run one pass synchronously.

        Args:
            events: Window snapshot
            alert_table: Current alert table (not modified)
            now: Pass timestamp

        Returns:
            PipelineOutput; alert_table is returned unchanged when the
            pipeline has no policy
        """
        table = alert_table if alert_table is not None else {}
        result = self._graph.invoke({
            "events": tuple(events),
            "now": now,
            "alert_table": table,
            "labeling": None,
            "aggregation": None,
            "alerts": [],
            "updated_table": table,
        })

        return PipelineOutput(
            labeling=result["labeling"],
            aggregation=result["aggregation"],
            alerts=tuple(result["alerts"]),
            alert_table=result["updated_table"],
        )


def build_pipeline(settings: Settings, with_alerts: bool = True) -> TickPipeline:
    """
    Build the tick pipeline from configuration.

    Raises:
        InvalidParameter: On invalid clustering, aggregation or alert values
    """
    clustering = settings.clustering
    aggregation = settings.aggregation

    clusterer = DensityClusterer(
        eps=clustering.eps,
        min_points=clustering.min_points,
        metric=clustering.metric,
        cell_size=clustering.cell_size,
    )
    aggregator = HotspotAggregator(
        min_cluster_size=aggregation.min_cluster_size,
        lat_km_per_degree=aggregation.lat_km_per_degree,
        lon_km_per_degree=aggregation.lon_km_per_degree,
        road_name_attribute=aggregation.road_name_attribute,
        road_type_attribute=aggregation.road_type_attribute,
    )
    policy = None
    if with_alerts:
        policy = AlertPolicy(AlertThresholds(**settings.alert.model_dump()))

    return TickPipeline(clusterer, aggregator, policy)
