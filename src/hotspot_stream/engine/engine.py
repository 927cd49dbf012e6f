"""
Streaming Engine
================

Orchestrates the sliding window, the tick pipeline and the sinks.

Lifecycle:
    engine = StreamingEngine(settings, hotspot_sink=sink, alert_sink=sink)
    await engine.run(source)      # ingest until the source ends
    await engine.stop()           # or stop early from another task

Tick Cadence (exactly one):
    tick.every_n_events    a tick is requested after every N ingested events
    tick.interval_seconds  a ticker task requests a tick on a fixed period,
                           waiting on the stop event between requests

Design Rules:
    - Ingestion never waits for clustering
    - At most one tick in flight; further requests are coalesced
    - Clustering runs in a worker thread under a wall-clock budget; a
      timed-out pass is skipped and leaves the alert table untouched
    - The alert table is committed before publishing; sink failures are
      counted and never roll state back
    - A tick's hotspot list and alerts are assembled before any sink is
      called, and publishing is shielded from cancellation
    - Alerts are only delivered after their hotspot list was delivered
    - StateCorruption halts the instance
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Dict, Optional, Set

from hotspot_stream.config import Settings
from hotspot_stream.engine.pipeline import PipelineOutput, TickPipeline, build_pipeline
from hotspot_stream.errors import (
    ClusteringTimeout,
    InvalidParameter,
    MalformedEvent,
    SinkUnavailable,
    StateCorruption,
)
from hotspot_stream.models.alert import AlertTable
from hotspot_stream.models.event import Event, validate_event
from hotspot_stream.models.output import TickResult
from hotspot_stream.observability.metrics import EngineMetrics
from hotspot_stream.sinks.base import AlertSink, HotspotSink
from hotspot_stream.stream.buffer import SlidingWindowBuffer


logger = logging.getLogger(__name__)


SKIP_INSUFFICIENT_EVENTS = "insufficient_events"
SKIP_CLUSTERING_TIMEOUT = "clustering_timeout"


class StreamingEngine:
    """
    Sliding-window hotspot engine for one monitored region.

    Instances share no mutable state; run one per region.

    Attributes:
        settings: Loaded configuration
        buffer: The live window
        pipeline: Cluster → aggregate → alert graph
        metrics: Operational counters
        halted: True once an invariant violation was detected
    """

    def __init__(
        self,
        settings: Settings,
        hotspot_sink: Optional[HotspotSink] = None,
        alert_sink: Optional[AlertSink] = None,
        pipeline: Optional[TickPipeline] = None,
    ) -> None:
        """
        Initialize engine.

        Args:
            settings: Configuration (window policy and tick cadence required)
            hotspot_sink: Receives the ranked list of every tick
            alert_sink: Receives emitted alerts
            pipeline: Prebuilt pipeline (built from settings if None)

        Raises:
            InvalidParameter: On a missing/ambiguous window policy or tick
                cadence, or invalid clustering/alert parameters
        """
        self.settings = settings
        self.hotspot_sink = hotspot_sink
        self.alert_sink = alert_sink

        self.buffer = SlidingWindowBuffer(
            max_age=settings.window.max_age_seconds,
            max_count=settings.window.max_count,
        )

        tick = settings.tick
        if (tick.every_n_events is None) == (tick.interval_seconds is None):
            raise InvalidParameter(
                "Exactly one of tick.every_n_events or tick.interval_seconds must be set"
            )
        self.every_n_events = tick.every_n_events
        self.interval_seconds = tick.interval_seconds
        self.clustering_timeout = tick.clustering_timeout_seconds
        self.sink_timeout = tick.sink_timeout_seconds

        self.min_points = settings.clustering.min_points
        self.pipeline = pipeline or build_pipeline(settings)

        # State
        self._alert_table: AlertTable = {}
        self._latest_result: Optional[TickResult] = None
        self._tick_id: int = 0
        self._tick_running: bool = False
        self._worker: Optional[asyncio.Future] = None
        self._since_last_tick: int = 0
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event: asyncio.Event = asyncio.Event()
        self.halted: bool = False

        self.metrics = EngineMetrics()

        cadence = (
            f"every {self.every_n_events} events"
            if self.every_n_events is not None
            else f"every {self.interval_seconds}s"
        )
        logger.info(
            f"StreamingEngine initialized: window={self.buffer.policy} "
            f"limit={self.buffer.max_count or self.buffer.max_age}, "
            f"eps={settings.clustering.eps}, min_points={self.min_points}, "
            f"tick {cadence}"
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def latest_result(self) -> Optional[TickResult]:
        """Most recent completed (non-skipped) tick."""
        return self._latest_result

    @property
    def alert_table(self) -> AlertTable:
        """Copy of the committed alert table."""
        return dict(self._alert_table)

    @property
    def tick_in_flight(self) -> bool:
        return self._tick_running

    @property
    def worker_busy(self) -> bool:
        """True while a clustering thread is still running, even after its tick gave up."""
        return self._worker is not None and not self._worker.done()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest(self, event: Event) -> bool:
        """
        Validate and append one event.

        Malformed events are counted and logged, never raised.

        Args:
            event: Incoming crash event

        Returns:
            True if the event entered the window

        Raises:
            StateCorruption: If the engine has halted
        """
        self._check_halted()

        try:
            validate_event(event)
        except MalformedEvent as e:
            self.metrics.malformed_events += 1
            logger.warning(f"Rejected malformed event: {e}")
            return False

        duplicates_before = self.buffer.duplicate_count
        evicted = self.buffer.append(event)
        if self.buffer.duplicate_count > duplicates_before:
            self.metrics.duplicate_events += 1
            logger.debug(f"Duplicate event ignored: {event.event_id}")
            return False

        self.metrics.events_ingested += 1
        self.metrics.evicted_events += len(evicted)

        if self.every_n_events is not None:
            self._since_last_tick += 1
            if self._since_last_tick >= self.every_n_events:
                self._since_last_tick = 0
                self.request_tick()

        return True

    def request_tick(self) -> None:
        """
        Schedule a tick on the running loop.

        Outside a running loop the request is only counted; call tick()
        directly in that case.
        """
        self.metrics.ticks_requested += 1
        if self._stop_event.is_set() or self.halted:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self.tick(), name=f"tick_{self.metrics.ticks_requested}")
        self._tasks.add(task)
        task.add_done_callback(self._on_tick_done)

    @staticmethod
    def _on_abandoned_worker_done(worker: asyncio.Future) -> None:
        """Collect the outcome of a pass whose tick timed out or was cancelled."""
        if worker.cancelled():
            return
        error = worker.exception()
        if error is not None:
            logger.error(f"Abandoned clustering pass failed: {error!r}")
        else:
            logger.debug("Abandoned clustering pass finished, result discarded")

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, StateCorruption):
            logger.error(f"Scheduled tick failed: {error!r}")

    # =========================================================================
    # Tick
    # =========================================================================

    async def tick(self) -> Optional[TickResult]:
        """
        Run one clustering pass over a window snapshot and publish it.

        Returns:
            TickResult (possibly skipped), or None if coalesced into a
            tick already in flight

        Raises:
            StateCorruption: On an invariant violation (engine halts)
        """
        self._check_halted()

        if self._tick_running or self.worker_busy:
            self.metrics.ticks_coalesced += 1
            logger.debug("Tick requested while one is in flight, coalesced")
            return None

        self._tick_running = True
        try:
            return await self._run_tick()
        finally:
            self._tick_running = False

    async def _run_tick(self) -> TickResult:
        events = self.buffer.snapshot()
        self._tick_id += 1
        tick_id = self._tick_id
        now = events[-1].timestamp if events else time.time()

        if len(events) < self.min_points:
            self.metrics.ticks_skipped += 1
            logger.debug(
                f"Tick {tick_id} skipped: {len(events)} events < min_points={self.min_points}"
            )
            return TickResult(
                tick_id=tick_id,
                timestamp=now,
                window_size=len(events),
                skipped=SKIP_INSUFFICIENT_EVENTS,
            )

        started = time.perf_counter()
        worker = asyncio.ensure_future(
            asyncio.to_thread(self.pipeline.run, events, self._alert_table, now)
        )
        self._worker = worker
        try:
            # The worker slot stays taken until its thread returns
            output: PipelineOutput = await asyncio.wait_for(
                asyncio.shield(worker),
                timeout=self.clustering_timeout,
            )
        except asyncio.TimeoutError:
            self.metrics.clustering_timeouts += 1
            self.metrics.ticks_skipped += 1
            error = ClusteringTimeout(
                f"Tick {tick_id}: clustering {len(events)} events exceeded "
                f"{self.clustering_timeout}s"
            )
            logger.error(str(error))
            return TickResult(
                tick_id=tick_id,
                timestamp=now,
                window_size=len(events),
                skipped=SKIP_CLUSTERING_TIMEOUT,
            )
        except StateCorruption as e:
            self._halt(e)
            raise
        finally:
            if not worker.done():
                worker.add_done_callback(self._on_abandoned_worker_done)

        duration_ms = (time.perf_counter() - started) * 1000.0
        aggregation = output.aggregation

        # Commit before publishing; delivery failures do not roll back
        self._alert_table = output.alert_table
        result = TickResult(
            tick_id=tick_id,
            timestamp=now,
            window_size=len(events),
            n_clusters=aggregation.n_clusters,
            n_noise=aggregation.n_noise,
            n_dropped_small=aggregation.n_dropped_small,
            hotspots=list(aggregation.hotspots),
            alerts=list(output.alerts),
            duration_ms=round(duration_ms, 3),
        )
        self._latest_result = result

        self.metrics.ticks_run += 1
        self.metrics.alerts_emitted += len(result.alerts)
        self.metrics.last_tick_duration_ms = result.duration_ms
        self.metrics.last_tick_timestamp = now

        logger.debug(
            f"Tick {tick_id}: {len(events)} events → {len(result.hotspots)} hotspots, "
            f"{len(result.alerts)} alerts in {duration_ms:.1f} ms"
        )

        await asyncio.shield(self._publish(result))
        return result

    async def _publish(self, result: TickResult) -> None:
        """
        Publish hotspots then alerts, each bounded by the sink timeout.

        Alerts are withheld when the hotspot list was not delivered; the
        tick stays available to republish_latest().
        """
        if self.hotspot_sink is not None:
            if not await self._deliver("hotspot", self.hotspot_sink.publish_hotspots(result)):
                if result.alerts:
                    logger.warning(
                        f"Tick {result.tick_id}: {len(result.alerts)} alerts withheld "
                        f"until the hotspot list is delivered"
                    )
                return
            self.metrics.hotspots_published += len(result.hotspots)

        if self.alert_sink is not None and result.alerts:
            await self._deliver("alert", self.alert_sink.publish_alerts(result.alerts))

    async def _deliver(self, name: str, call) -> bool:
        try:
            await asyncio.wait_for(call, timeout=self.sink_timeout)
            return True
        except asyncio.TimeoutError:
            error = SinkUnavailable(f"{name} sink did not respond within {self.sink_timeout}s")
        except SinkUnavailable as e:
            error = e
        except Exception as e:
            error = SinkUnavailable(f"{name} sink failed: {e}")

        self.metrics.sink_failures += 1
        logger.error(f"Publish failed, state retained: {error}")
        return False

    async def republish_latest(self) -> bool:
        """
        Publish the latest completed tick again.

        Returns:
            False if no tick has completed yet
        """
        if self._latest_result is None:
            return False
        await self._publish(self._latest_result)
        return True

    # =========================================================================
    # Run / Stop
    # =========================================================================

    async def run(self, source: AsyncIterator[Event]) -> None:
        """
        Ingest from an async event source until it ends or stop() is called.

        A final tick runs when the source is exhausted.

        Raises:
            StateCorruption: If the engine halted while running
        """
        self._check_halted()
        self._stop_event.clear()

        ticker: Optional[asyncio.Task] = None
        if self.interval_seconds is not None:
            ticker = asyncio.create_task(self._ticker(), name="hotspot_ticker")

        logger.info("StreamingEngine running")
        try:
            async for event in source:
                self.ingest(event)
                if self._stop_event.is_set() or self.halted:
                    break
        finally:
            if ticker is not None:
                ticker.cancel()
                try:
                    await ticker
                except asyncio.CancelledError:
                    pass

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        self._check_halted()

        if not self._stop_event.is_set():
            result = await self.tick()
            if result is not None and result.skipped is None:
                logger.info(
                    f"Source exhausted, final tick {result.tick_id}: "
                    f"{len(result.hotspots)} hotspots"
                )

        logger.info(f"StreamingEngine finished: {self.metrics.to_dict()}")

    async def _ticker(self) -> None:
        """Request a tick every interval until stopped."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                self.request_tick()

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """
        Stop gracefully.

        In-flight ticks get up to grace_seconds to finish; after that they
        are cancelled. A tick cancelled before publishing publishes nothing.
        """
        if grace_seconds is None:
            grace_seconds = self.settings.tick.shutdown_grace_seconds

        logger.info("StreamingEngine stopping...")
        self._stop_event.set()

        pending = [t for t in self._tasks if not t.done()]
        if pending:
            _, not_done = await asyncio.wait(pending, timeout=grace_seconds)
            for task in not_done:
                logger.warning(f"Abandoning in-flight tick {task.get_name()}")
                task.cancel()
            if not_done:
                await asyncio.gather(*not_done, return_exceptions=True)

        logger.info("StreamingEngine stopped")

    def reset(self) -> None:
        """Clear the window and the alert table."""
        cleared = self.buffer.clear()
        self._alert_table = {}
        self._latest_result = None
        self._since_last_tick = 0
        logger.info(f"StreamingEngine reset ({cleared} events cleared)")

    # =========================================================================
    # Observability
    # =========================================================================

    def get_metrics(self) -> Dict[str, object]:
        """Engine, window and alert-table counters."""
        return {
            **self.metrics.to_dict(),
            "halted": self.halted,
            "tick_in_flight": self._tick_running,
            "alert_records": len(self._alert_table),
            "window": self.buffer.metrics(),
        }

    def _check_halted(self) -> None:
        if self.halted:
            raise StateCorruption("Engine halted after an invariant violation")

    def _halt(self, error: StateCorruption) -> None:
        self.halted = True
        self._stop_event.set()
        logger.critical(f"StreamingEngine halted: {error}")
