"""
Event Consumer
==============

WebSocket client for consuming crash events from an upstream publisher.

This module provides the EventConsumer class which:
    - Connects to a WebSocket endpoint publishing JSON crash records
    - Parses each message (one record object, or a list of records)
    - Warns about timestamps going backwards
    - Handles reconnection with a fixed backoff
    - Is itself an async iterator of Events, so it plugs straight into
      StreamingEngine.run()

Design Rules:
    - Uses the same record mapping as file replay
    - Logs and counts unparseable messages but continues processing
    - Reconnects automatically on disconnect
    - Exposes metrics for health monitoring
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, List, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)

from hotspot_stream.errors import MalformedEvent
from hotspot_stream.models.event import Event
from hotspot_stream.observability.metrics import SourceMetrics
from hotspot_stream.stream.replay import record_to_event


logger = logging.getLogger(__name__)


class EventConsumer:
    """
    WebSocket consumer for crash events.

    Attributes:
        url: WebSocket URL to connect to
        connected: Whether currently connected
        metrics: Operational metrics

    Example:
        consumer = EventConsumer(
            url="ws://localhost:8000/ws/crashes",
            reconnect_backoff_ms=500,
        )
        engine_task = asyncio.create_task(engine.run(consumer))

        # Later, stop gracefully
        await consumer.stop()
        await engine_task
    """

    def __init__(
        self,
        url: str,
        reconnect_backoff_ms: int = 500,
        max_reconnect_attempts: int = 0,
    ) -> None:
        """
        Initialize event consumer.

        Args:
            url: WebSocket URL of the publisher
            reconnect_backoff_ms: Backoff between reconnect attempts
            max_reconnect_attempts: Max attempts (0 = unlimited)
        """
        self.url = url
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        # State
        self._websocket: Optional[Any] = None
        self._connected: bool = False
        self._running: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()

        self.metrics = SourceMetrics()

    @property
    def connected(self) -> bool:
        """Whether currently connected to the publisher."""
        return self._connected

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._consume()

    async def _consume(self) -> AsyncIterator[Event]:
        """
        Yield events until stopped.

        Reconnects on disconnect; ends after stop() or when the reconnect
        budget is exhausted.
        """
        self._running = True
        self._stop_event.clear()

        logger.info(f"EventConsumer starting, connecting to {self.url}")

        while self._running:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=20,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._websocket = ws
                    self._connected = True
                    logger.info(f"Connected to event publisher: {self.url}")

                    try:
                        async for message in ws:
                            if not self._running:
                                break
                            for event in self._parse(message):
                                self.metrics.events_emitted += 1
                                self.metrics.last_event_id = event.event_id
                                self.metrics.last_timestamp = event.timestamp
                                yield event
                    except ConnectionClosedOK:
                        logger.info("Connection closed normally")
                    finally:
                        self._connected = False
                        self._websocket = None

                if not self._running:
                    break
                # Publisher closed cleanly; treat like any other disconnect
                raise ConnectionError("publisher closed the stream")

            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                if not self._running:
                    break

                logger.error(f"Connection error: {e}")
                self._connected = False

                if (
                    self.max_reconnect_attempts > 0
                    and self.metrics.reconnect_count >= self.max_reconnect_attempts
                ):
                    logger.error(
                        f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                    )
                    break

                self.metrics.reconnect_count += 1
                backoff_sec = self.reconnect_backoff_ms / 1000.0
                logger.info(
                    f"Reconnecting in {backoff_sec:.1f}s "
                    f"(attempt {self.metrics.reconnect_count})"
                )

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                    break
                except asyncio.TimeoutError:
                    pass

        self._running = False
        logger.info("EventConsumer stopped")

    async def stop(self) -> None:
        """
        Stop consuming gracefully.

        Signals the consume loop to exit and closes the connection.
        """
        logger.info("EventConsumer stopping...")
        self._running = False
        self._stop_event.set()

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Error while closing connection: {e}")

        self._connected = False

    def _parse(self, raw: Any) -> List[Event]:
        """
        Parse a raw WebSocket message into events.

        Args:
            raw: JSON text (one record object or a list of them)

        Returns:
            Parsed events; empty on parse error
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            self.metrics.parse_errors += 1
            logger.error(f"Failed to parse event JSON: {e}")
            return []

        records = data if isinstance(data, list) else [data]
        events: List[Event] = []
        for record in records:
            self.metrics.records_read += 1
            if not isinstance(record, dict):
                self.metrics.parse_errors += 1
                logger.error(f"Invalid event structure: {type(record).__name__}")
                continue
            try:
                event = record_to_event(record)
            except MalformedEvent as e:
                self.metrics.parse_errors += 1
                logger.error(f"Invalid event record: {e}")
                continue

            if self.metrics.last_timestamp > 0 and event.timestamp < self.metrics.last_timestamp:
                logger.warning(
                    f"Timestamp went backwards: got {event.timestamp:.0f} for "
                    f"{event.event_id}, previous was {self.metrics.last_timestamp:.0f}"
                )
            events.append(event)

        return events
