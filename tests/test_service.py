"""
Service Tests
=============

Tests for the FastAPI endpoints, driven through the application lifespan.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from conftest import dense_cluster, make_settings
from hotspot_stream.main import create_app
from hotspot_stream.stream import iter_events


class IdleSource:
    """Source that yields nothing until stopped."""

    def __init__(self):
        self.stopped = False
        self._stop_event = asyncio.Event()

    def __aiter__(self):
        return self._events()

    async def _events(self):
        await self._stop_event.wait()
        return
        yield

    async def stop(self):
        self.stopped = True
        self._stop_event.set()


@pytest.fixture
def service_settings(tmp_path):
    return make_settings(
        tick={"every_n_events": 5, "shutdown_grace_seconds": 1.0},
        output={"directory": str(tmp_path / "stream_logs")},
    )


def _poll(client, path, predicate, attempts=150):
    """GET path until predicate(response) holds."""
    for _ in range(attempts):
        response = client.get(path)
        if predicate(response):
            return response
        time.sleep(0.02)
    return response


def _source_drained(client):
    """Wait until the engine task has finished its final tick."""
    return _poll(client, "/ready", lambda r: r.status_code == 503)


class TestEndpoints:
    """Tests against a finite in-memory source."""

    def test_hotspots_and_alerts(self, service_settings, tmp_path):
        app = create_app(service_settings, source=iter_events(dense_cluster("C", 12)))

        with TestClient(app) as client:
            _source_drained(client)

            response = client.get("/hotspots")
            assert response.status_code == 200
            body = response.json()
            assert body["window_size"] == 12
            assert body["hotspots"][0]["rank"] == 1
            assert body["hotspots"][0]["count"] == 12

            alerts = client.get("/alerts").json()
            assert alerts["recent"][0]["kind"] == "NEW"
            assert len(alerts["records"]) == 1
            assert "member_ids" not in alerts["records"][0]["summary"]

        assert (tmp_path / "stream_logs" / "hotspots.jsonl").exists()
        assert (tmp_path / "stream_logs" / "alerts.csv").exists()

    def test_health_and_metrics(self, service_settings):
        app = create_app(service_settings, source=iter_events(dense_cluster("C", 12)))

        with TestClient(app) as client:
            _source_drained(client)

            assert client.get("/health").json()["status"] == "healthy"

            metrics = client.get("/metrics").json()
            assert metrics["engine"]["events_ingested"] == 12
            assert metrics["engine"]["window"]["policy"] == "max_count"
            assert metrics["source"] == {}

            info = client.get("/").json()
            assert info["min_points"] == 5

    def test_websocket_pushes_latest_tick(self, service_settings):
        app = create_app(service_settings, source=iter_events(dense_cluster("C", 12)))

        with TestClient(app) as client:
            _source_drained(client)
            with client.websocket_connect("/ws/hotspots") as websocket:
                message = websocket.receive_json()

        assert message["hotspots"][0]["rank"] == 1


class TestReadiness:
    """Tests for /ready and shutdown."""

    def test_ready_while_running(self, service_settings):
        source = IdleSource()
        app = create_app(service_settings, source=source)

        with TestClient(app) as client:
            response = client.get("/ready")
            assert response.status_code == 200
            assert response.json()["halted"] is False

            assert client.get("/hotspots").status_code == 503

        assert source.stopped

    def test_not_ready_after_source_ends(self, service_settings):
        app = create_app(service_settings, source=iter_events([]))

        with TestClient(app) as client:
            response = _source_drained(client)

            assert response.status_code == 503
            assert response.json()["engine_running"] is False
