"""
Sliding Window Buffer Tests
===========================

Tests for count- and age-based eviction.
"""

import random
import threading

import pytest

from conftest import BASE_TIME, make_event
from hotspot_stream.errors import InvalidParameter
from hotspot_stream.stream.buffer import SlidingWindowBuffer


def _ids(events):
    return [e.event_id for e in events]


class TestCountWindow:
    """Tests for max_count eviction."""

    def test_keeps_most_recent(self):
        """Appending E1..E8 into a window of 5 keeps E4..E8."""
        buffer = SlidingWindowBuffer(max_count=5)

        evicted = []
        for i in range(1, 9):
            evicted.extend(buffer.append(make_event(f"E{i}", timestamp=BASE_TIME + i)))

        assert _ids(buffer.snapshot()) == ["E4", "E5", "E6", "E7", "E8"]
        assert _ids(evicted) == ["E1", "E2", "E3"]
        assert buffer.evicted_count == 3
        assert buffer.total_appended == 8

    def test_holds_last_n_after_every_append(self):
        """With shuffled timestamps the window is always the last N appended."""
        timestamps = [BASE_TIME + t for t in (9, 3, 7, 1, 8, 2, 6, 0, 5, 4)]
        buffer = SlidingWindowBuffer(max_count=4)

        appended = []
        for i, ts in enumerate(timestamps):
            event = make_event(f"E{i}", timestamp=ts)
            buffer.append(event)
            appended.append(event.event_id)

            assert buffer.size <= 4
            assert set(_ids(buffer.snapshot())) == set(appended[-4:])

    def test_append_returns_evicted(self):
        """Each append reports what it pushed out."""
        buffer = SlidingWindowBuffer(max_count=2)
        buffer.append(make_event("a", timestamp=BASE_TIME))
        buffer.append(make_event("b", timestamp=BASE_TIME + 1))

        evicted = buffer.append(make_event("c", timestamp=BASE_TIME + 2))

        assert _ids(evicted) == ["a"]

    def test_evicts_by_arrival_not_timestamp(self):
        """A late arrival is still the newest for count eviction."""
        buffer = SlidingWindowBuffer(max_count=2)
        buffer.append(make_event("a", timestamp=BASE_TIME + 10))
        buffer.append(make_event("late", timestamp=BASE_TIME))

        evicted = buffer.append(make_event("b", timestamp=BASE_TIME + 20))

        assert _ids(evicted) == ["a"]
        assert _ids(buffer.snapshot()) == ["late", "b"]


class TestAgeWindow:
    """Tests for max_age eviction in event time."""

    def test_evicts_older_than_horizon(self):
        """Events more than max_age before the newest are dropped."""
        buffer = SlidingWindowBuffer(max_age=60)
        buffer.append(make_event("a", timestamp=BASE_TIME))
        buffer.append(make_event("b", timestamp=BASE_TIME + 30))

        evicted = buffer.append(make_event("c", timestamp=BASE_TIME + 75))

        assert _ids(evicted) == ["a"]
        assert _ids(buffer.snapshot()) == ["b", "c"]

    def test_boundary_is_kept(self):
        """An event exactly max_age old stays."""
        buffer = SlidingWindowBuffer(max_age=60)
        buffer.append(make_event("a", timestamp=BASE_TIME))

        evicted = buffer.append(make_event("b", timestamp=BASE_TIME + 60))

        assert evicted == []
        assert len(buffer) == 2

    def test_stale_arrival_is_evicted_immediately(self):
        """An event already past the horizon goes straight out."""
        buffer = SlidingWindowBuffer(max_age=60)
        buffer.append(make_event("new", timestamp=BASE_TIME + 1000))

        evicted = buffer.append(make_event("old", timestamp=BASE_TIME))

        assert _ids(evicted) == ["old"]
        assert _ids(buffer.snapshot()) == ["new"]

    def test_wall_clock_is_irrelevant(self):
        """Old timestamps stay as long as no newer event arrives."""
        buffer = SlidingWindowBuffer(max_age=1)
        buffer.append(make_event("a", timestamp=0.0))
        buffer.append(make_event("b", timestamp=0.5))

        assert len(buffer) == 2
        assert buffer.latest_timestamp == 0.5


class TestOrdering:
    """Tests for snapshot ordering and copies."""

    def test_out_of_order_insertion(self):
        """Snapshots are sorted by timestamp."""
        buffer = SlidingWindowBuffer(max_count=10)
        for event_id, offset in [("a", 10), ("b", 30), ("c", 20), ("d", 5)]:
            buffer.append(make_event(event_id, timestamp=BASE_TIME + offset))

        assert _ids(buffer.snapshot()) == ["d", "a", "c", "b"]
        assert buffer.metrics()["out_of_order_count"] == 2

    def test_equal_timestamps_keep_arrival_order(self):
        """Ties stay in arrival order."""
        buffer = SlidingWindowBuffer(max_count=10)
        buffer.append(make_event("a", timestamp=BASE_TIME + 5))
        buffer.append(make_event("b", timestamp=BASE_TIME))
        buffer.append(make_event("c", timestamp=BASE_TIME))

        assert _ids(buffer.snapshot()) == ["b", "c", "a"]

    def test_snapshot_is_a_copy(self):
        """Later appends do not change an earlier snapshot."""
        buffer = SlidingWindowBuffer(max_count=2)
        buffer.append(make_event("a", timestamp=BASE_TIME))
        snapshot = buffer.snapshot()

        buffer.append(make_event("b", timestamp=BASE_TIME + 1))
        buffer.append(make_event("c", timestamp=BASE_TIME + 2))

        assert _ids(snapshot) == ["a"]


class TestConcurrentAccess:
    """Snapshots taken from another thread while a producer appends."""

    def test_snapshots_never_torn(self):
        """Every snapshot is sorted, duplicate-free and within the limit."""
        buffer = SlidingWindowBuffer(max_count=50)
        offsets = list(range(2000))
        random.Random(7).shuffle(offsets)
        done = threading.Event()
        problems = []

        def produce():
            try:
                for i, offset in enumerate(offsets):
                    buffer.append(make_event(f"E{i}", timestamp=BASE_TIME + offset))
            finally:
                done.set()

        def observe():
            while not done.is_set():
                snapshot = buffer.snapshot()
                stamps = [e.timestamp for e in snapshot]
                ids = _ids(snapshot)
                if stamps != sorted(stamps):
                    problems.append("unsorted")
                if len(set(ids)) != len(ids):
                    problems.append("duplicate")
                if len(snapshot) > 50:
                    problems.append("oversized")

        producer = threading.Thread(target=produce)
        observer = threading.Thread(target=observe)
        observer.start()
        producer.start()
        producer.join(timeout=10)
        observer.join(timeout=10)

        assert done.is_set()
        assert problems == []
        assert buffer.size == 50
        assert set(_ids(buffer.snapshot())) == {f"E{i}" for i in range(1950, 2000)}


class TestDuplicatesAndClear:
    """Tests for duplicate ids and clear()."""

    def test_duplicate_is_ignored(self):
        """A repeated id in the window is counted and dropped."""
        buffer = SlidingWindowBuffer(max_count=5)
        buffer.append(make_event("a", timestamp=BASE_TIME))

        evicted = buffer.append(make_event("a", timestamp=BASE_TIME + 1, lat=0.0))

        assert evicted == []
        assert len(buffer) == 1
        assert buffer.duplicate_count == 1
        assert buffer.snapshot()[0].timestamp == BASE_TIME

    def test_id_reusable_after_eviction(self):
        """Once evicted, an id may enter again."""
        buffer = SlidingWindowBuffer(max_count=1)
        buffer.append(make_event("a", timestamp=BASE_TIME))
        buffer.append(make_event("b", timestamp=BASE_TIME + 1))

        buffer.append(make_event("a", timestamp=BASE_TIME + 2))

        assert _ids(buffer.snapshot()) == ["a"]
        assert buffer.duplicate_count == 0

    def test_clear(self):
        """clear() empties the window and reports the count."""
        buffer = SlidingWindowBuffer(max_count=5)
        buffer.append(make_event("a", timestamp=BASE_TIME))
        buffer.append(make_event("b", timestamp=BASE_TIME + 1))

        assert buffer.clear() == 2
        assert buffer.snapshot() == ()
        assert buffer.latest_timestamp is None


class TestPolicyValidation:
    """Exactly one eviction policy is required."""

    def test_neither_policy(self):
        with pytest.raises(InvalidParameter):
            SlidingWindowBuffer()

    def test_both_policies(self):
        with pytest.raises(InvalidParameter):
            SlidingWindowBuffer(max_age=60, max_count=10)

    @pytest.mark.parametrize("kwargs", [{"max_age": 0}, {"max_age": -5}, {"max_count": 0}])
    def test_non_positive_limit(self, kwargs):
        with pytest.raises(InvalidParameter):
            SlidingWindowBuffer(**kwargs)

    def test_policy_name(self):
        assert SlidingWindowBuffer(max_age=60).policy == "max_age"
        assert SlidingWindowBuffer(max_count=10).policy == "max_count"
