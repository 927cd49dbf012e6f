"""
Batch Runner Tests
==================

Tests for one-shot clustering over a static dataset.
"""

import math

import pandas as pd
import pytest

from conftest import dense_cluster, make_event, make_settings
from hotspot_stream.engine import BatchHotspotRunner
from hotspot_stream.engine.batch import EVENT_COLUMNS, HOTSPOT_COLUMNS
from hotspot_stream.errors import InvalidParameter


class TestRun:
    """Tests for BatchHotspotRunner.run()."""

    def test_scenario_single_hotspot(self, scenario_a_events):
        """Twelve close crashes are the only hotspot; three noise points."""
        result = BatchHotspotRunner(eps=0.01, min_points=10).run(scenario_a_events)

        assert len(result.hotspots) == 1
        assert result.hotspots[0].count == 12
        assert result.aggregation.n_noise == 3
        assert result.n_rejected == 0

    def test_rejects_malformed_and_duplicates(self):
        events = dense_cluster("C", 10) + [
            make_event("C000"),
            make_event("bad", lon=math.inf),
        ]

        result = BatchHotspotRunner(min_points=10).run(events)

        assert result.n_rejected == 2
        assert len(result.events) == 10

    def test_empty_dataset(self):
        result = BatchHotspotRunner().run([])

        assert result.hotspots == ()
        assert result.hotspots_frame().empty
        assert list(result.events_frame().columns) == EVENT_COLUMNS

    def test_from_settings(self):
        """Clustering and aggregation sections drive the runner."""
        settings = make_settings(clustering={"eps": 0.01, "min_points": 3},
                                 aggregation={"min_cluster_size": 3})
        runner = BatchHotspotRunner.from_settings(settings)

        result = runner.run(dense_cluster("C", 4))

        assert runner.pipeline.policy is None
        assert len(result.hotspots) == 1


class TestFrames:
    """Tests for tabular output."""

    def test_hotspots_frame(self, scenario_a_events):
        result = BatchHotspotRunner(min_points=10).run(scenario_a_events)

        frame = result.hotspots_frame()

        assert list(frame.columns) == HOTSPOT_COLUMNS
        assert frame.loc[0, "rank"] == 1
        assert frame.loc[0, "count"] == 12
        assert "member_ids" not in frame.columns

    def test_events_frame_marks_noise(self, scenario_a_events):
        result = BatchHotspotRunner(min_points=10).run(scenario_a_events)

        frame = result.events_frame().set_index("event_id")

        assert frame.loc["C000", "cluster_id"] == 1
        assert frame.loc["C000", "hotspot_rank"] == 1
        assert frame.loc["N001", "cluster_id"] == 0
        assert pd.isna(frame.loc["N001", "hotspot_rank"])


class TestRunCsv:
    """Tests for run_csv() file output."""

    def test_writes_tables(self, victoria_csv, tmp_path):
        """The three output tables are written."""
        out = tmp_path / "tables"

        result = BatchHotspotRunner(min_points=10).run_csv(str(victoria_csv), str(out), top_n=5)

        assert (out / "hotspots_all.csv").exists()
        assert (out / "hotspots_top5.csv").exists()
        assert (out / "events_with_clusters.csv").exists()

        hotspots = pd.read_csv(out / "hotspots_all.csv")
        assert len(hotspots) == 1
        assert hotspots.loc[0, "count"] == 12
        assert hotspots.loc[0, "fatalities"] == 1
        assert hotspots.loc[0, "dominant_road"] == "PRINCES"

        events = pd.read_csv(out / "events_with_clusters.csv")
        assert len(events) == 13
        assert len(result.events) == 13

    def test_top_n_must_be_positive(self, victoria_csv, tmp_path):
        with pytest.raises(InvalidParameter):
            BatchHotspotRunner().run_csv(str(victoria_csv), str(tmp_path), top_n=0)

    def test_missing_input(self, tmp_path):
        with pytest.raises(InvalidParameter):
            BatchHotspotRunner().run_csv(str(tmp_path / "missing.csv"), str(tmp_path))
