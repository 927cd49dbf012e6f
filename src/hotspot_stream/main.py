"""
Hotspot Stream Service
======================

FastAPI entry point for the streaming hotspot engine.

The service subscribes to the configured event source, runs the engine in
the background and serves its latest state.

Endpoints:
    GET  /            - Service information
    GET  /health      - Liveness probe (is process alive?)
    GET  /ready       - Readiness probe (engine running and not halted?)
    GET  /metrics     - Engine, window and source counters
    GET  /hotspots    - Latest ranked hotspot list
    GET  /alerts      - Recent alerts and the live alert records
    WS   /ws/hotspots - Pushes every new tick result

Run:
    uvicorn --factory hotspot_stream.main:create_app
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from hotspot_stream import __version__
from hotspot_stream.config import Settings, load_config, setup_logging
from hotspot_stream.engine import StreamingEngine
from hotspot_stream.sinks import (
    CompositeSink,
    CsvAlertSink,
    JsonlFileSink,
    LoggingSink,
    MemorySink,
)
from hotspot_stream.stream import EventConsumer


logger = logging.getLogger(__name__)


# =============================================================================
# Service State
# =============================================================================

class ServiceState:
    """Components owned by one running service instance."""

    def __init__(
        self,
        settings: Settings,
        engine: StreamingEngine,
        memory: MemorySink,
        source: Any,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.memory = memory
        self.source = source
        self.engine_task: Optional[asyncio.Task] = None
        self.startup_time: float = time.time()

    @property
    def running(self) -> bool:
        return self.engine_task is not None and not self.engine_task.done()


def build_sinks(settings: Settings, memory: MemorySink) -> CompositeSink:
    """Memory + JSON-lines + CSV alert log + application log."""
    output = settings.output
    return CompositeSink([
        memory,
        JsonlFileSink(output.directory, output.hotspots_file, output.alerts_file),
        CsvAlertSink(f"{output.directory}/{output.alerts_csv}"),
        LoggingSink(),
    ])


async def _stop_source(source: Any) -> None:
    stop = getattr(source, "stop", None)
    if stop is not None:
        await stop()


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, source: Any = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration (loaded from config.yaml / env if None)
        source: Async event source (WebSocket subscription to
            settings.source.url if None)

    Raises:
        InvalidParameter: On invalid configuration
    """
    if settings is None:
        settings = load_config()
        setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        logger.info(f"Starting {settings.service.name} {settings.service.version}")

        memory = MemorySink(max_results=100, max_alerts=1000)
        sink = build_sinks(settings, memory)
        engine = StreamingEngine(settings, hotspot_sink=sink, alert_sink=sink)

        event_source = source
        if event_source is None:
            logger.info(f"Event source URL: {settings.source.url}")
            event_source = EventConsumer(
                url=settings.source.url,
                reconnect_backoff_ms=settings.source.reconnect_backoff_ms,
                max_reconnect_attempts=settings.source.max_reconnect_attempts,
            )

        state = ServiceState(settings, engine, memory, event_source)
        state.engine_task = asyncio.create_task(engine.run(event_source), name="hotspot_engine")
        app.state.service = state

        logger.info("All components started")

        yield

        # Shutdown
        logger.info("Shutting down gracefully...")
        await _stop_source(event_source)
        await engine.stop()

        try:
            await asyncio.wait_for(state.engine_task, timeout=settings.tick.shutdown_grace_seconds)
        except asyncio.TimeoutError:
            state.engine_task.cancel()
            try:
                await state.engine_task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            logger.error(f"Engine task ended with error: {e}")

        logger.info("Shutdown complete")

    app = FastAPI(
        title="Crash Hotspot Stream",
        description="Sliding-window DBSCAN crash hotspot detection",
        version=__version__,
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


# =============================================================================
# Endpoints
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    def service() -> ServiceState:
        return app.state.service

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        settings = service().settings
        return JSONResponse({
            "service": settings.service.name,
            "version": settings.service.version,
            "status": "running",
            "window_policy": service().engine.buffer.policy,
            "eps": settings.clustering.eps,
            "min_points": settings.clustering.min_points,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe - is the process alive?

        Always returns 200 if the service is running.
        """
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - service().startup_time, 1),
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """
        Readiness probe.

        Returns 503 while the engine task is not running or the engine
        has halted.
        """
        state = service()
        engine = state.engine
        source_connected = getattr(state.source, "connected", None)

        body = {
            "engine_running": state.running,
            "halted": engine.halted,
            "source_connected": source_connected,
            "window_size": engine.buffer.size,
            "ticks_run": engine.metrics.ticks_run,
        }
        if state.running and not engine.halted:
            return JSONResponse({"status": "ready", **body})
        return JSONResponse({"status": "not_ready", **body}, status_code=503)

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed metrics for observability."""
        state = service()
        source_metrics = getattr(state.source, "metrics", None)
        return JSONResponse({
            "uptime_seconds": round(time.time() - state.startup_time, 1),
            "engine": state.engine.get_metrics(),
            "source": source_metrics.to_dict() if source_metrics is not None else {},
        })

    @app.get("/hotspots")
    async def hotspots() -> JSONResponse:
        """Latest completed tick."""
        result = service().engine.latest_result
        if result is None:
            return JSONResponse({"error": "No hotspots computed yet"}, status_code=503)
        return JSONResponse(result.model_dump(mode="json"))

    @app.get("/alerts")
    async def alerts(limit: int = 50) -> JSONResponse:
        """Recent alerts and the live alert records."""
        state = service()
        return JSONResponse({
            "recent": [a.model_dump(mode="json") for a in state.memory.recent_alerts(limit)],
            "records": [
                record.model_dump(mode="json", exclude={"summary": {"member_ids"}})
                for record in state.engine.alert_table.values()
            ],
        })

    @app.websocket("/ws/hotspots")
    async def hotspot_stream(websocket: WebSocket) -> None:
        """WebSocket endpoint pushing each new tick result."""
        await websocket.accept()
        logger.info("Client connected to /ws/hotspots")

        last_tick_id = -1
        try:
            while not service().engine.stopping:
                result = service().engine.latest_result
                if result is not None and result.tick_id != last_tick_id:
                    await websocket.send_json(result.model_dump(mode="json"))
                    last_tick_id = result.tick_id
                # Doubles as the poll interval; a client close raises here
                try:
                    await asyncio.wait_for(websocket.receive_text(), timeout=1.0)
                except asyncio.TimeoutError:
                    pass
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"WebSocket error: {e}")
        finally:
            logger.info("Client disconnected from /ws/hotspots")


# =============================================================================
# Main Entry Point
# =============================================================================

def serve(settings: Settings) -> None:
    """Run the service with uvicorn."""
    import uvicorn

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    config = load_config()
    setup_logging(config)
    serve(config)
