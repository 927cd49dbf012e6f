"""
Sink Contracts
==============

Protocols for the two outputs of a tick, plus a fan-out sink.

    HotspotSink.publish_hotspots(result)   full ranked list, once per tick
    AlertSink.publish_alerts(alerts)       alerts emitted by that tick

Design Rules:
    - Sinks own their back-pressure; the engine bounds every call with a
      short timeout and never retries
    - A sink that cannot deliver raises SinkUnavailable
"""

import logging
from typing import List, Protocol, Sequence, runtime_checkable

from hotspot_stream.errors import SinkUnavailable
from hotspot_stream.models.alert import AlertEvent
from hotspot_stream.models.output import TickResult


logger = logging.getLogger(__name__)


@runtime_checkable
class HotspotSink(Protocol):
    """Receives the ranked hotspot list of every completed tick."""

    async def publish_hotspots(self, result: TickResult) -> None:
        ...


@runtime_checkable
class AlertSink(Protocol):
    """Receives NEW / CONTINUING alerts."""

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        ...


class CompositeSink:
    """
    Fan a tick out to several sinks.

    Every child is attempted even if an earlier one fails; failures are
    reported together as one SinkUnavailable.
    """

    def __init__(self, sinks: Sequence[object]) -> None:
        self.sinks = list(sinks)

    async def publish_hotspots(self, result: TickResult) -> None:
        failures: List[str] = []
        for sink in self.sinks:
            if not isinstance(sink, HotspotSink):
                continue
            try:
                await sink.publish_hotspots(result)
            except Exception as e:
                logger.error(f"{type(sink).__name__}.publish_hotspots failed: {e}")
                failures.append(type(sink).__name__)
        if failures:
            raise SinkUnavailable(f"hotspot sinks failed: {', '.join(failures)}")

    async def publish_alerts(self, alerts: Sequence[AlertEvent]) -> None:
        failures: List[str] = []
        for sink in self.sinks:
            if not isinstance(sink, AlertSink):
                continue
            try:
                await sink.publish_alerts(alerts)
            except Exception as e:
                logger.error(f"{type(sink).__name__}.publish_alerts failed: {e}")
                failures.append(type(sink).__name__)
        if failures:
            raise SinkUnavailable(f"alert sinks failed: {', '.join(failures)}")
