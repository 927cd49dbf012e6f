"""
Engine Module
=============

Orchestration of clustering passes:
    - TickPipeline: LangGraph workflow cluster → aggregate → alert
    - StreamingEngine: sliding window + cadence + sinks
    - BatchHotspotRunner: one pass over a static dataset
"""

from hotspot_stream.engine.batch import BatchHotspotRunner, BatchResult
from hotspot_stream.engine.engine import StreamingEngine
from hotspot_stream.engine.pipeline import PipelineOutput, TickPipeline, build_pipeline


__all__ = [
    "BatchHotspotRunner",
    "BatchResult",
    "PipelineOutput",
    "StreamingEngine",
    "TickPipeline",
    "build_pipeline",
]
