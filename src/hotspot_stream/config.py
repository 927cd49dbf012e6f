"""
Hotspot Stream Configuration
============================

This module handles configuration loading for the hotspot engine.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    HOTSPOT_EPS                -> clustering.eps
    HOTSPOT_MIN_POINTS         -> clustering.min_points
    HOTSPOT_MIN_CLUSTER_SIZE   -> aggregation.min_cluster_size
    HOTSPOT_WINDOW_MAX_AGE     -> window.max_age_seconds (clears max_count)
    HOTSPOT_WINDOW_MAX_COUNT   -> window.max_count (clears max_age_seconds)
    HOTSPOT_TICK_EVERY         -> tick.every_n_events (clears interval)
    HOTSPOT_TICK_INTERVAL      -> tick.interval_seconds (clears every_n_events)
    HOTSPOT_SOURCE_URL         -> source.url
    HOTSPOT_OUTPUT_DIR         -> output.directory
    HOTSPOT_LOG_LEVEL          -> logging.level
    PORT / HOTSPOT_PORT        -> server.port

There is no module-level settings instance: callers load a Settings object
and pass it to the components they build.

Example:
    from hotspot_stream.config import load_config

    settings = load_config("config.yaml")
    print(settings.clustering.eps)
    print(settings.window.max_count)
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from hotspot_stream.errors import InvalidParameter


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="crash-hotspot-stream", description="Service name")
    version: str = Field(default="v0.1.0", description="Output contract version")


class ClusteringConfig(BaseModel):
    """DBSCAN parameters."""

    eps: float = Field(
        default=0.01,
        gt=0,
        description="Neighbourhood radius (degrees for euclidean, km for haversine)",
    )
    min_points: int = Field(
        default=5,
        ge=1,
        description="Minimum neighbourhood size (point included) for a core point",
    )
    metric: str = Field(
        default="euclidean",
        description="Distance metric: 'euclidean' or 'haversine'",
    )
    cell_size: Optional[float] = Field(
        default=None,
        gt=0,
        description="Grid cell size in degrees for large windows (default: eps)",
    )


class AggregationConfig(BaseModel):
    """Hotspot aggregation configuration."""

    min_cluster_size: int = Field(
        default=5,
        ge=1,
        description="Smallest cluster reported as a hotspot",
    )
    lat_km_per_degree: float = Field(
        default=111.0,
        gt=0,
        description="Kilometres per degree of latitude",
    )
    lon_km_per_degree: float = Field(
        default=95.0,
        gt=0,
        description="Kilometres per degree of longitude at the monitored latitude",
    )
    road_name_attribute: str = Field(default="road_name")
    road_type_attribute: str = Field(default="road_type")


class WindowConfig(BaseModel):
    """Sliding window eviction policy. Exactly one field must be set."""

    max_age_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Retention horizon relative to the latest event time",
    )
    max_count: Optional[int] = Field(
        default=None,
        ge=1,
        description="Number of most recent events to keep (FIFO)",
    )


class AlertConfig(BaseModel):
    """Alert thresholds and record tracking."""

    count_threshold: int = Field(default=5, ge=1, description="Alert on count >= this")
    severity_threshold: float = Field(default=50.0, ge=0, description="Alert on severity sum >= this")
    match_radius: float = Field(
        default=0.01,
        gt=0,
        description="Centroid distance (degrees) for matching a known hotspot",
    )
    grace_period_passes: int = Field(
        default=3,
        ge=0,
        description="Unmatched passes tolerated before a record is removed",
    )
    cooldown_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Minimum seconds between CONTINUING alerts (0 = every pass)",
    )
    key_precision: int = Field(default=3, ge=0, description="Centroid decimals in record keys")
    key_bucket_seconds: float = Field(default=3600.0, gt=0, description="Time bucket in record keys")


class TickConfig(BaseModel):
    """Tick cadence and time budgets. Exactly one cadence must be set."""

    every_n_events: Optional[int] = Field(
        default=None,
        ge=1,
        description="Tick after every N ingested events",
    )
    interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Tick on a fixed wall-clock interval",
    )
    clustering_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Wall-clock budget for one clustering pass",
    )
    sink_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Maximum wait for a single sink publish",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Time an in-flight tick may take to finish on shutdown",
    )


class SourceConfig(BaseModel):
    """Event source configuration."""

    url: str = Field(
        default="ws://localhost:8000/ws/crashes",
        description="WebSocket URL publishing crash events as JSON",
    )
    reconnect_backoff_ms: int = Field(
        default=500,
        ge=100,
        description="Backoff in milliseconds between reconnect attempts",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )
    replay_rate_per_second: Optional[float] = Field(
        default=None,
        gt=0,
        description="Throttle for file replay (None = as fast as possible)",
    )
    max_messages: Optional[int] = Field(
        default=None,
        ge=1,
        description="Stop replay after this many records",
    )


class OutputConfig(BaseModel):
    """File sink configuration."""

    directory: str = Field(default="output/stream_logs", description="Output directory")
    hotspots_file: str = Field(default="hotspots.jsonl")
    alerts_file: str = Field(default="alerts.jsonl")
    alerts_csv: str = Field(default="alerts.csv")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8001, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the hotspot engine.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    alert: AlertConfig = Field(default_factory=AlertConfig)
    tick: TickConfig = Field(default_factory=TickConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration

    Raises:
        InvalidParameter: If the file or an override does not validate
    """
    if config_path is not None and not Path(config_path).exists():
        raise InvalidParameter(f"Config file not found: {config_path}")

    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path:
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidParameter(f"Invalid YAML in {config_path}: {e}") from e
    else:
        logger.warning("No config file found, using defaults and environment variables")

    try:
        _apply_env_overrides(config_data)
        return Settings.model_validate(config_data)
    except (ValidationError, ValueError) as e:
        raise InvalidParameter(f"Invalid configuration: {e}") from e


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Clustering
    if env_eps := os.environ.get("HOTSPOT_EPS"):
        config_data.setdefault("clustering", {})["eps"] = float(env_eps)
    if env_min := os.environ.get("HOTSPOT_MIN_POINTS"):
        config_data.setdefault("clustering", {})["min_points"] = int(env_min)
    if env_size := os.environ.get("HOTSPOT_MIN_CLUSTER_SIZE"):
        config_data.setdefault("aggregation", {})["min_cluster_size"] = int(env_size)

    # Window policy (setting one clears the other)
    if env_age := os.environ.get("HOTSPOT_WINDOW_MAX_AGE"):
        window = config_data.setdefault("window", {})
        window["max_age_seconds"] = float(env_age)
        window.pop("max_count", None)
    if env_count := os.environ.get("HOTSPOT_WINDOW_MAX_COUNT"):
        window = config_data.setdefault("window", {})
        window["max_count"] = int(env_count)
        window.pop("max_age_seconds", None)

    # Tick cadence (setting one clears the other)
    if env_every := os.environ.get("HOTSPOT_TICK_EVERY"):
        tick = config_data.setdefault("tick", {})
        tick["every_n_events"] = int(env_every)
        tick.pop("interval_seconds", None)
    if env_interval := os.environ.get("HOTSPOT_TICK_INTERVAL"):
        tick = config_data.setdefault("tick", {})
        tick["interval_seconds"] = float(env_interval)
        tick.pop("every_n_events", None)

    # Source and output
    if env_url := os.environ.get("HOTSPOT_SOURCE_URL"):
        config_data.setdefault("source", {})["url"] = env_url
    if env_out := os.environ.get("HOTSPOT_OUTPUT_DIR"):
        config_data.setdefault("output", {})["directory"] = env_out

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("HOTSPOT_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("HOTSPOT_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
