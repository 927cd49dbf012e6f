"""
Streaming Engine Tests
======================

Tests for ingestion, tick scheduling, timeouts, sink failures and halting.

The engine is async; each test drives it with asyncio.run().
"""

import asyncio
import math
import threading
import time

import pytest

from conftest import BASE_TIME, dense_cluster, make_event, make_settings
from hotspot_stream.engine import StreamingEngine, build_pipeline
from hotspot_stream.engine.engine import SKIP_CLUSTERING_TIMEOUT, SKIP_INSUFFICIENT_EVENTS
from hotspot_stream.errors import InvalidParameter, SinkUnavailable, StateCorruption
from hotspot_stream.models.alert import AlertKind
from hotspot_stream.sinks import MemorySink
from hotspot_stream.stream import iter_events


# =============================================================================
# Test doubles
# =============================================================================

class SlowPipeline:
    """Delegates to a real pipeline after blocking the worker thread."""

    def __init__(self, inner, delay):
        self.inner = inner
        self.delay = delay

    def run(self, events, alert_table=None, now=0.0):
        time.sleep(self.delay)
        return self.inner.run(events, alert_table, now)


class CountingPipeline(SlowPipeline):
    """SlowPipeline that records how many passes overlap."""

    def __init__(self, inner, delay):
        super().__init__(inner, delay)
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.calls = 0

    def run(self, events, alert_table=None, now=0.0):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            return super().run(events, alert_table, now)
        finally:
            with self._lock:
                self.active -= 1


class CorruptPipeline:
    def run(self, events, alert_table=None, now=0.0):
        raise StateCorruption("labels out of range")


class FailingSink:
    def __init__(self):
        self.calls = 0

    async def publish_hotspots(self, result):
        self.calls += 1
        raise SinkUnavailable("hotspot store down")

    async def publish_alerts(self, alerts):
        self.calls += 1
        raise SinkUnavailable("pager down")


class HangingSink:
    async def publish_hotspots(self, result):
        await asyncio.sleep(10)


def _engine(settings=None, **kwargs):
    settings = settings or make_settings()
    memory = MemorySink()
    kwargs.setdefault("hotspot_sink", memory)
    kwargs.setdefault("alert_sink", memory)
    return StreamingEngine(settings, **kwargs), memory


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    """Tests for configuration checks."""

    def test_requires_tick_cadence(self):
        """Neither cadence configured."""
        with pytest.raises(InvalidParameter):
            StreamingEngine(make_settings(tick={}))

    def test_rejects_both_cadences(self):
        with pytest.raises(InvalidParameter):
            StreamingEngine(make_settings(tick={"every_n_events": 5, "interval_seconds": 1.0}))

    def test_requires_window_policy(self):
        with pytest.raises(InvalidParameter):
            StreamingEngine(make_settings(window={}))

    def test_rejects_both_window_policies(self):
        with pytest.raises(InvalidParameter):
            StreamingEngine(make_settings(window={"max_count": 10, "max_age_seconds": 60}))


# =============================================================================
# Ingestion
# =============================================================================

class TestIngest:
    """Tests for ingest()."""

    def test_accepts_valid_event(self):
        engine, _ = _engine()

        assert engine.ingest(make_event("a")) is True
        assert engine.buffer.size == 1
        assert engine.metrics.events_ingested == 1

    def test_malformed_event_counted_not_raised(self):
        """Non-finite coordinates are rejected and counted."""
        engine, _ = _engine()

        accepted = engine.ingest(make_event("bad", lat=math.nan))

        assert accepted is False
        assert engine.metrics.malformed_events == 1
        assert engine.buffer.size == 0

    def test_negative_severity_rejected(self):
        engine, _ = _engine()

        assert engine.ingest(make_event("neg", severity=-1)) is False
        assert engine.metrics.malformed_events == 1

    def test_duplicate_counted(self):
        engine, _ = _engine()
        engine.ingest(make_event("a"))

        assert engine.ingest(make_event("a")) is False
        assert engine.metrics.duplicate_events == 1
        assert engine.metrics.events_ingested == 1

    def test_evictions_counted(self):
        engine, _ = _engine(make_settings(window={"max_count": 3}))

        for i in range(5):
            engine.ingest(make_event(f"e{i}", timestamp=BASE_TIME + i))

        assert engine.metrics.evicted_events == 2
        assert engine.buffer.size == 3

    def test_tick_requested_on_cadence(self):
        """Outside a running loop requests are only counted."""
        engine, _ = _engine(make_settings(tick={"every_n_events": 4}))

        for i in range(9):
            engine.ingest(make_event(f"e{i}", timestamp=BASE_TIME + i))

        assert engine.metrics.ticks_requested == 2


# =============================================================================
# Tick
# =============================================================================

class TestTick:
    """Tests for a single tick."""

    def test_skipped_below_min_points(self):
        """Fewer events than min_points: no clustering, nothing published."""
        engine, memory = _engine()
        for event in dense_cluster("C", 3):
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.skipped == SKIP_INSUFFICIENT_EVENTS
        assert result.hotspots == []
        assert engine.latest_result is None
        assert engine.metrics.ticks_skipped == 1
        assert memory.latest is None

    def test_publishes_hotspots_and_alerts(self):
        """A dense window yields a ranked hotspot and a NEW alert."""
        engine, memory = _engine()
        events = dense_cluster("C", 12) + [make_event("far", lat=-36.0, lon=146.0, timestamp=BASE_TIME + 50)]
        for event in events:
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.skipped is None
        assert result.window_size == 13
        assert result.n_noise == 1
        assert [h.rank for h in result.hotspots] == [1]
        assert result.hotspots[0].count == 12
        assert [a.kind for a in result.alerts] == [AlertKind.NEW]
        assert memory.latest == result
        assert list(memory.alerts) == result.alerts
        assert len(engine.alert_table) == 1

    def test_timestamp_is_latest_event_time(self):
        engine, _ = _engine()
        for event in dense_cluster("C", 6, start=BASE_TIME):
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.timestamp == BASE_TIME + 5

    def test_tick_ids_increase(self):
        engine, _ = _engine()
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        async def two_ticks():
            return await engine.tick(), await engine.tick()

        first, second = asyncio.run(two_ticks())

        assert second.tick_id == first.tick_id + 1
        assert [a.kind for a in second.alerts] == [AlertKind.CONTINUING]

    def test_concurrent_request_coalesced(self):
        """A tick requested while one is in flight does not run."""
        settings = make_settings()
        engine, _ = _engine(settings, pipeline=SlowPipeline(build_pipeline(settings), 0.2))
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        async def overlap():
            return await asyncio.gather(engine.tick(), engine.tick())

        first, second = asyncio.run(overlap())

        assert first is not None and first.skipped is None
        assert second is None
        assert engine.metrics.ticks_coalesced == 1
        assert engine.metrics.ticks_run == 1

    def test_clustering_timeout_skips_pass(self):
        """A pass over budget publishes nothing and keeps the alert table."""
        settings = make_settings(tick={"every_n_events": 10, "clustering_timeout_seconds": 0.05})
        engine, memory = _engine(settings, pipeline=SlowPipeline(build_pipeline(settings), 0.5))
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.skipped == SKIP_CLUSTERING_TIMEOUT
        assert engine.metrics.clustering_timeouts == 1
        assert engine.alert_table == {}
        assert memory.latest is None
        assert not engine.tick_in_flight

    def test_overrunning_pass_blocks_new_passes(self):
        """After a timeout, ticks are coalesced until the worker thread returns."""
        settings = make_settings(tick={"every_n_events": 10, "clustering_timeout_seconds": 0.05})
        pipeline = CountingPipeline(build_pipeline(settings), 0.3)
        engine, _ = _engine(settings, pipeline=pipeline)
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        async def scenario():
            first = await engine.tick()
            following = [await engine.tick() for _ in range(3)]
            busy = engine.worker_busy
            while engine.worker_busy:
                await asyncio.sleep(0.02)
            last = await engine.tick()
            return first, following, busy, last

        first, following, busy, last = asyncio.run(scenario())

        assert first.skipped == SKIP_CLUSTERING_TIMEOUT
        assert following == [None, None, None]
        assert busy
        assert engine.metrics.ticks_coalesced == 3
        assert last.skipped == SKIP_CLUSTERING_TIMEOUT
        assert pipeline.calls == 2
        assert pipeline.max_active == 1

    def test_sink_failure_keeps_state(self):
        """Delivery failures are counted; the alert table is still committed."""
        failing = FailingSink()
        engine, _ = _engine(hotspot_sink=failing, alert_sink=failing)
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.skipped is None
        assert engine.latest_result == result
        assert len(engine.alert_table) == 1
        assert engine.metrics.sink_failures == 1
        assert failing.calls == 1

    def test_alerts_withheld_when_hotspots_undelivered(self):
        """Alerts follow their hotspot list, including on republish."""
        alerts = MemorySink()
        engine, _ = _engine(hotspot_sink=FailingSink(), alert_sink=alerts)
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        asyncio.run(engine.tick())

        assert list(alerts.alerts) == []
        assert engine.metrics.hotspots_published == 0

        engine.hotspot_sink = alerts
        assert asyncio.run(engine.republish_latest()) is True

        assert alerts.latest == engine.latest_result
        assert [a.kind for a in alerts.alerts] == [AlertKind.NEW]

    def test_sink_timeout(self):
        """A sink that never answers is abandoned after sink_timeout_seconds."""
        settings = make_settings(tick={"every_n_events": 10, "sink_timeout_seconds": 0.05})
        engine, _ = _engine(settings, hotspot_sink=HangingSink(), alert_sink=None)
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        result = asyncio.run(engine.tick())

        assert result.skipped is None
        assert engine.metrics.sink_failures == 1
        assert engine.metrics.hotspots_published == 0

    def test_corruption_halts_engine(self):
        """StateCorruption stops the instance for good."""
        engine, _ = _engine(pipeline=CorruptPipeline())
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        with pytest.raises(StateCorruption):
            asyncio.run(engine.tick())

        assert engine.halted
        with pytest.raises(StateCorruption):
            engine.ingest(make_event("late"))

    def test_republish_latest(self):
        engine, memory = _engine()
        assert asyncio.run(engine.republish_latest()) is False

        for event in dense_cluster("C", 6):
            engine.ingest(event)
        asyncio.run(engine.tick())

        assert asyncio.run(engine.republish_latest()) is True
        assert len(memory.results) == 2
        assert len(memory.alerts) == 2

    def test_reset(self):
        engine, _ = _engine()
        for event in dense_cluster("C", 6):
            engine.ingest(event)
        asyncio.run(engine.tick())

        engine.reset()

        assert engine.buffer.size == 0
        assert engine.alert_table == {}
        assert engine.latest_result is None


# =============================================================================
# Run loop
# =============================================================================

class TestRun:
    """Tests for run() over async sources."""

    def test_run_to_exhaustion(self):
        """Scheduled ticks plus a final tick over the whole source."""
        engine, memory = _engine(make_settings(tick={"every_n_events": 5}))
        events = dense_cluster("C", 12) + [make_event("bad", lat=math.nan, timestamp=BASE_TIME + 20)]

        asyncio.run(engine.run(iter_events(events)))

        assert engine.metrics.events_ingested == 12
        assert engine.metrics.malformed_events == 1
        assert engine.metrics.ticks_requested == 2
        assert engine.metrics.ticks_run >= 1
        assert memory.latest.window_size == 12
        assert memory.latest.hotspots[0].count == 12
        assert [a.kind for a in memory.alerts].count(AlertKind.NEW) == 1

    def test_interval_cadence(self):
        """A wall-clock ticker requests ticks while the source is open."""
        engine, memory = _engine(make_settings(tick={"interval_seconds": 0.02}))

        async def slow_source():
            for event in dense_cluster("C", 8):
                yield event
                await asyncio.sleep(0.02)

        asyncio.run(engine.run(slow_source()))

        assert engine.metrics.ticks_requested >= 1
        assert memory.latest is not None

    def test_stop_ends_endless_source(self):
        """stop() breaks the ingest loop and skips the final tick."""
        engine, _ = _engine(make_settings(tick={"every_n_events": 1000}))

        async def endless():
            i = 0
            while True:
                yield make_event(f"e{i}", timestamp=BASE_TIME + i)
                i += 1
                await asyncio.sleep(0.001)

        async def run_then_stop():
            task = asyncio.create_task(engine.run(endless()))
            await asyncio.sleep(0.05)
            await engine.stop()
            await asyncio.wait_for(task, timeout=2.0)

        asyncio.run(run_then_stop())

        assert engine.stopping
        assert engine.metrics.events_ingested > 0
        assert engine.metrics.ticks_run == 0
        assert engine.latest_result is None

    def test_stop_cancels_tick_past_grace(self):
        """A tick still clustering when the grace period ends publishes nothing."""
        settings = make_settings(tick={"every_n_events": 1000})
        engine, memory = _engine(settings, pipeline=SlowPipeline(build_pipeline(settings), 0.3))
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        async def tick_then_stop():
            engine.request_tick()
            await asyncio.sleep(0.01)
            ticks = [t for t in asyncio.all_tasks() if t.get_name().startswith("tick_")]
            await engine.stop(grace_seconds=0.05)
            return ticks

        ticks = asyncio.run(tick_then_stop())

        assert len(ticks) == 1
        assert ticks[0].cancelled()
        assert memory.latest is None
        assert engine.latest_result is None
        assert engine.alert_table == {}

    def test_stop_waits_for_tick_within_grace(self):
        """A tick that finishes inside the grace period is published."""
        settings = make_settings(tick={"every_n_events": 1000})
        engine, memory = _engine(settings, pipeline=SlowPipeline(build_pipeline(settings), 0.05))
        for event in dense_cluster("C", 6):
            engine.ingest(event)

        async def tick_then_stop():
            engine.request_tick()
            await asyncio.sleep(0.01)
            await engine.stop(grace_seconds=2.0)

        asyncio.run(tick_then_stop())

        assert memory.latest is not None
        assert len(engine.alert_table) == 1

    def test_run_after_halt_refused(self):
        engine, _ = _engine(pipeline=CorruptPipeline())
        for event in dense_cluster("C", 6):
            engine.ingest(event)
        with pytest.raises(StateCorruption):
            asyncio.run(engine.tick())

        with pytest.raises(StateCorruption):
            asyncio.run(engine.run(iter_events([])))

    def test_get_metrics(self):
        engine, _ = _engine()
        engine.ingest(make_event("a"))

        metrics = engine.get_metrics()

        assert metrics["events_ingested"] == 1
        assert metrics["halted"] is False
        assert metrics["window"]["size"] == 1
        assert metrics["window"]["policy"] == "max_count"
