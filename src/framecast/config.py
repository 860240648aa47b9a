"""
framecast Configuration
=======================

This module handles configuration loading for the streaming service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    FRAMECAST_CAPTURE_BACKEND  -> capture.backend
    FRAMECAST_CAPTURE_DEVICE   -> capture.device
    FRAMECAST_STREAM_MODE      -> stream.mode
    FRAMECAST_QUEUE_CAPACITY   -> stream.queue_capacity
    FRAMECAST_MAX_FRAME_BYTES  -> adaptive.max_frame_bytes
    FRAMECAST_MAX_ERRORS       -> adaptive.max_errors
    FRAMECAST_COOLDOWN_SEC     -> adaptive.cooldown_seconds
    FRAMECAST_BEACON_ENABLED   -> beacon.enabled
    FRAMECAST_BEACON_PREFIX    -> beacon.prefix
    FRAMECAST_HOST             -> server.host
    FRAMECAST_PORT             -> server.port
    FRAMECAST_LOG_LEVEL        -> logging.level
    PORT                       -> server.port (container platforms)

Example:
    from framecast.config import load_config

    settings = load_config()
    print(settings.stream.mode)
    print(settings.adaptive.max_frame_bytes)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="framecast", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")
    title: str = Field(default="ESP32 Camera", description="Title of the viewer page")


class CaptureConfig(BaseModel):
    """Frame source and capture task configuration."""

    backend: Literal["mock", "opencv"] = Field(
        default="mock",
        description="Frame source backend: 'mock' or 'opencv'",
    )
    device: str = Field(
        default="0",
        description="OpenCV device index or stream URL",
    )
    width: int = Field(default=320, ge=16, description="Capture width (QVGA)")
    height: int = Field(default=240, ge=16, description="Capture height (QVGA)")
    jpeg_quality: int = Field(
        default=80,
        ge=1,
        le=100,
        description="JPEG encode quality for backends that encode",
    )
    mock_unavailable_every: int = Field(
        default=0,
        ge=0,
        description="Mock backend reports Unavailable every Nth acquire (0 = never)",
    )
    idle_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Sleep while no client is streaming",
    )
    unavailable_backoff_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Capture task sleep after an Unavailable acquire",
    )
    direct_unavailable_backoff_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Direct-mode sleep after an Unavailable acquire",
    )
    filtered_pause_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Capture task pause after a skipped or rejected frame",
    )
    capture_interval_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Capture task pause after a forwarded frame (~10 fps)",
    )
    queued_skip_ratio: int = Field(
        default=2,
        ge=1,
        description="Fixed skip modulus used by the decoupled capture task",
    )


class StreamConfig(BaseModel):
    """Stream encoder and session configuration."""

    mode: Literal["direct", "queued"] = Field(
        default="direct",
        description="'direct' hand-off or 'queued' decoupled capture",
    )
    boundary: str = Field(
        default="123456789000000000000987654321",
        min_length=1,
        max_length=70,
        description="Multipart boundary token",
    )
    chunk_size: int = Field(
        default=2048,
        ge=256,
        description="Payload sub-chunk size in bytes (direct mode)",
    )
    queued_chunk_size: int = Field(
        default=4096,
        ge=256,
        description="Payload sub-chunk size in bytes (queued mode)",
    )
    chunk_delay_seconds: float = Field(
        default=0.005,
        ge=0,
        description="Pacing delay between payload sub-chunks",
    )
    queue_capacity: int = Field(
        default=5,
        ge=1,
        description="FrameQueue capacity (queued mode)",
    )
    frame_wait_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Wait for a frame before sending a keep-alive",
    )
    send_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="A single write slower than this is a transient error",
    )
    max_sessions: int = Field(
        default=2,
        ge=1,
        description="Maximum concurrent /stream sessions",
    )
    status_log_every: int = Field(
        default=20,
        ge=1,
        description="Log a status line every N frames sent (direct mode)",
    )
    queued_status_log_every: int = Field(
        default=50,
        ge=1,
        description="Log a status line every N frames sent (queued mode)",
    )


class AdaptiveConfig(BaseModel):
    """Error-driven degradation policy."""

    skip_ratio: int = Field(default=2, ge=1, description="Baseline skip ratio")
    degraded_skip_ratio: int = Field(
        default=12,
        ge=1,
        description="Skip ratio once more than one consecutive error occurred",
    )
    max_frame_bytes: int = Field(
        default=25 * 1024,
        ge=1024,
        description="Baseline frame size ceiling in bytes",
    )
    degraded_size_factor: float = Field(
        default=0.5,
        gt=0,
        le=1.0,
        description="Ceiling multiplier while errors are pending",
    )
    frame_delay_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Inter-frame delay on a healthy link",
    )
    degraded_frame_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        description="Inter-frame delay after errors",
    )
    framing_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Backoff after a boundary or header write failure",
    )
    payload_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Backoff after a payload write failure",
    )
    max_errors: int = Field(
        default=5,
        ge=1,
        description="Consecutive errors that open the circuit",
    )
    cooldown_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Cooldown pause once max_errors is reached",
    )
    size_smoothing_alpha: float = Field(
        default=0.2,
        gt=0,
        le=1.0,
        description="EMA smoothing factor for frame size statistics",
    )


class KeepAliveConfig(BaseModel):
    """TCP and HTTP keep-alive configuration."""

    enabled: bool = Field(default=True, description="Enable TCP keep-alive")
    idle_seconds: int = Field(default=7, ge=1, description="Idle time before keep-alive packets")
    interval_seconds: int = Field(default=3, ge=1, description="Interval between keep-alive packets")
    count: int = Field(default=5, ge=1, description="Unanswered keep-alive packets before drop")
    http_max_requests: int = Field(
        default=100,
        ge=1,
        description="'max' advertised in the Keep-Alive header",
    )


class BeaconConfig(BaseModel):
    """Presence beacon configuration."""

    enabled: bool = Field(default=False, description="Broadcast presence over UDP")
    prefix: str = Field(default="ESP32CAM", min_length=1, description="Payload prefix")
    port: int = Field(default=45678, ge=1, le=65535, description="UDP broadcast port")
    address: str = Field(default="255.255.255.255", description="Broadcast address")
    interval_seconds: float = Field(default=3.0, gt=0, description="Broadcast interval")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=80, ge=1, le=65535, description="Bind port")
    graceful_shutdown_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Upper bound on waiting for open connections at shutdown",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for framecast.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    keepalive: KeepAliveConfig = Field(default_factory=KeepAliveConfig)
    beacon: BeaconConfig = Field(default_factory=BeaconConfig)
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
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/etc/framecast/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Capture settings
    if env_backend := os.environ.get("FRAMECAST_CAPTURE_BACKEND"):
        config_data.setdefault("capture", {})["backend"] = env_backend
    if env_device := os.environ.get("FRAMECAST_CAPTURE_DEVICE"):
        config_data.setdefault("capture", {})["device"] = env_device

    # Stream settings
    if env_mode := os.environ.get("FRAMECAST_STREAM_MODE"):
        config_data.setdefault("stream", {})["mode"] = env_mode
    if env_queue := os.environ.get("FRAMECAST_QUEUE_CAPACITY"):
        config_data.setdefault("stream", {})["queue_capacity"] = int(env_queue)

    # Adaptive policy
    if env_ceiling := os.environ.get("FRAMECAST_MAX_FRAME_BYTES"):
        config_data.setdefault("adaptive", {})["max_frame_bytes"] = int(env_ceiling)
    if env_errors := os.environ.get("FRAMECAST_MAX_ERRORS"):
        config_data.setdefault("adaptive", {})["max_errors"] = int(env_errors)
    if env_cooldown := os.environ.get("FRAMECAST_COOLDOWN_SEC"):
        config_data.setdefault("adaptive", {})["cooldown_seconds"] = float(env_cooldown)

    # Beacon
    if env_beacon := os.environ.get("FRAMECAST_BEACON_ENABLED"):
        config_data.setdefault("beacon", {})["enabled"] = env_beacon.lower() in ("1", "true", "yes")
    if env_prefix := os.environ.get("FRAMECAST_BEACON_PREFIX"):
        config_data.setdefault("beacon", {})["prefix"] = env_prefix

    # Server settings (container platforms use PORT)
    if env_host := os.environ.get("FRAMECAST_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("FRAMECAST_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("FRAMECAST_LOG_LEVEL"):
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
