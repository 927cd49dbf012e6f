"""
Command Line Interface
======================

Headless entry point wiring an event source to the engine.

Usage:
    hotspot-stream [--config PATH] replay FILE [--rate N] [--max-messages N]
    hotspot-stream [--config PATH] subscribe [URL]
    hotspot-stream [--config PATH] batch FILE [--output-dir DIR] [--top-n N]
    hotspot-stream [--config PATH] serve

Hotspots and alerts are written under output.directory (JSON lines plus an
alerts.csv log) and summarised in the application log.

Exit Codes:
    0  graceful shutdown (source exhausted or SIGINT/SIGTERM)
    1  unrecoverable runtime error (e.g. engine halted)
    2  configuration error
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, List, Optional

from hotspot_stream import __version__
from hotspot_stream.config import Settings, load_config, setup_logging
from hotspot_stream.engine import BatchHotspotRunner, StreamingEngine
from hotspot_stream.errors import InvalidParameter, StateCorruption
from hotspot_stream.sinks import CompositeSink, CsvAlertSink, JsonlFileSink, LoggingSink
from hotspot_stream.stream import EventConsumer, FileReplaySource


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hotspot-stream",
        description="Sliding-window DBSCAN crash hotspot detection",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: search ./config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override logging.level",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="command", required=True)

    replay = commands.add_parser("replay", help="Replay a CSV / JSON-lines crash file")
    replay.add_argument("file", help="Input file")
    replay.add_argument(
        "--rate",
        type=float,
        default=None,
        help="Events per second (default: source.replay_rate_per_second, else unthrottled)",
    )
    replay.add_argument(
        "--max-messages",
        type=int,
        default=None,
        help="Stop after N events (default: source.max_messages)",
    )

    subscribe = commands.add_parser("subscribe", help="Consume events from a WebSocket publisher")
    subscribe.add_argument("url", nargs="?", default=None, help="WebSocket URL (default: source.url)")

    batch = commands.add_parser("batch", help="One-shot hotspot tables for a whole dataset")
    batch.add_argument("file", help="Input file")
    batch.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Directory for the CSV tables (default: output.directory)",
    )
    batch.add_argument("--top-n", type=int, default=50, help="Size of the top-N table (default: 50)")
    batch.add_argument("--eps", type=float, default=None, help="Override clustering.eps")
    batch.add_argument("--min-points", type=int, default=None, help="Override clustering.min_points")

    commands.add_parser("serve", help="Run the HTTP / WebSocket service")

    return parser


# =============================================================================
# Streaming
# =============================================================================

def build_file_sink(settings: Settings) -> CompositeSink:
    output = settings.output
    return CompositeSink([
        JsonlFileSink(output.directory, output.hotspots_file, output.alerts_file),
        CsvAlertSink(f"{output.directory}/{output.alerts_csv}"),
        LoggingSink(),
    ])


async def run_stream(settings: Settings, source: Any) -> dict:
    """
    Run the engine over a source until it ends or a signal arrives.

    Returns:
        Final engine metrics
    """
    sink = build_file_sink(settings)
    engine = StreamingEngine(settings, hotspot_sink=sink, alert_sink=sink)

    async def shutdown() -> None:
        logger.info("Signal received, initiating graceful shutdown...")
        await source.stop()
        await engine.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(shutdown()))
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await engine.run(source)

    metrics = engine.get_metrics()
    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Events ingested: {metrics['events_ingested']}")
    logger.info(f"Malformed events: {metrics['malformed_events']}")
    logger.info(f"Ticks run: {metrics['ticks_run']} (skipped {metrics['ticks_skipped']}, "
                f"coalesced {metrics['ticks_coalesced']})")
    logger.info(f"Alerts emitted: {metrics['alerts_emitted']}")
    logger.info(f"Clustering timeouts: {metrics['clustering_timeouts']}")
    logger.info(f"Sink failures: {metrics['sink_failures']}")
    logger.info(f"Active alert records: {metrics['alert_records']}")
    logger.info("=" * 60)
    return metrics


def cmd_replay(args: argparse.Namespace, settings: Settings) -> int:
    source = FileReplaySource(
        args.file,
        rate_per_second=args.rate or settings.source.replay_rate_per_second,
        max_messages=args.max_messages or settings.source.max_messages,
    )
    asyncio.run(run_stream(settings, source))
    return EXIT_OK


def cmd_subscribe(args: argparse.Namespace, settings: Settings) -> int:
    source = EventConsumer(
        url=args.url or settings.source.url,
        reconnect_backoff_ms=settings.source.reconnect_backoff_ms,
        max_reconnect_attempts=settings.source.max_reconnect_attempts,
    )
    asyncio.run(run_stream(settings, source))
    return EXIT_OK


def cmd_batch(args: argparse.Namespace, settings: Settings) -> int:
    overrides = {}
    if args.eps is not None:
        overrides["eps"] = args.eps
    if args.min_points is not None:
        overrides["min_points"] = args.min_points
    if overrides:
        settings = settings.model_copy(update={
            "clustering": settings.clustering.model_copy(update=overrides),
        })

    runner = BatchHotspotRunner.from_settings(settings)
    result = runner.run_csv(
        args.file,
        args.output_dir or settings.output.directory,
        top_n=args.top_n,
    )

    for hotspot in result.hotspots[:10]:
        logger.info(
            f"#{hotspot.rank}: {hotspot.count} crashes, severity={hotspot.severity_sum:g}, "
            f"fatalities={hotspot.fatalities}, "
            f"center=({hotspot.centroid_lat:.4f}, {hotspot.centroid_lon:.4f})"
        )
    return EXIT_OK


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    from hotspot_stream.main import serve

    serve(settings)
    return EXIT_OK


COMMANDS = {
    "replay": cmd_replay,
    "subscribe": cmd_subscribe,
    "batch": cmd_batch,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_config(args.config)
        if args.log_level:
            settings = settings.model_copy(update={
                "logging": settings.logging.model_copy(update={"level": args.log_level}),
            })
        setup_logging(settings)
        return COMMANDS[args.command](args, settings)

    except InvalidParameter as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except StateCorruption as e:
        logger.critical(f"Engine halted: {e}")
        return EXIT_RUNTIME_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_OK
    except Exception as e:
        logger.exception(f"Unrecoverable error: {e}")
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":
    sys.exit(main())
