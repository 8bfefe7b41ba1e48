"""
coolstream Configuration
========================

This module handles configuration loading for the stream relay.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    COOLSTREAM_HOST               -> stream.host
    COOLSTREAM_PORT               -> stream.port
    COOLSTREAM_FRAME_INTERVAL_MS  -> stream.frame_interval_ms
    COOLSTREAM_IDLE_TIMEOUT       -> lifecycle.idle_timeout_seconds
    COOLSTREAM_SOURCE_BACKEND     -> source.backend
    COOLSTREAM_DEVICE             -> source.device
    COOLSTREAM_CONTROL_PORT       -> control.port
    COOLSTREAM_AUTOSTART          -> control.autostart_server
    COOLSTREAM_LOG_LEVEL          -> logging.level

Example:
    from coolstream.config import settings

    print(settings.stream.port)
    print(settings.lifecycle.idle_timeout_seconds)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from coolstream.models.status import DevicePreference


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification."""

    name: str = Field(default="coolstream", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class StreamConfig(BaseModel):
    """Streaming server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host for the stream")
    port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Stream port (0 = ephemeral)",
    )
    frame_interval_ms: int = Field(
        default=100,
        ge=1,
        description="Delay between two frames sent to one client",
    )
    retry_interval_ms: int = Field(
        default=50,
        ge=1,
        description="Delay between polls while no frame is available",
    )
    send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Socket write timeout per client",
    )
    accept_poll_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Accept timeout used to re-check the running flag",
    )
    shutdown_join_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Max wait for worker threads on shutdown",
    )


class LifecycleConfig(BaseModel):
    """Producer power management configuration."""

    idle_timeout_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Delay after the last disconnect before the producer stops",
    )
    restart_pause_ms: int = Field(
        default=200,
        ge=0,
        description="Pause between stop and start on a device change",
    )
    stop_wait_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Max wait for the producer stop when the server stops",
    )


class SourceConfig(BaseModel):
    """Frame source configuration."""

    backend: Literal["synthetic", "camera"] = Field(
        default="synthetic",
        description="Frame source: 'synthetic' or 'camera'",
    )
    device: DevicePreference = Field(
        default=DevicePreference.BACK,
        description="Initial camera preference",
    )
    back_index: int = Field(default=0, ge=0, description="Capture index of the back camera")
    front_index: int = Field(default=1, ge=0, description="Capture index of the front camera")
    width: int = Field(default=640, ge=16, description="Frame width")
    height: int = Field(default=480, ge=16, description="Frame height")
    jpeg_quality: int = Field(default=60, ge=1, le=100, description="JPEG quality")
    fps: float = Field(default=15.0, gt=0, le=120, description="Max produced frames per second")


class ControlConfig(BaseModel):
    """Control API configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host for the control API")
    port: int = Field(default=8081, ge=1, le=65535, description="Control API port")
    autostart_server: bool = Field(
        default=True,
        description="Start the stream server when the control API starts",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for coolstream.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)
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
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/etc/coolstream/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    # Build settings object
    settings = Settings.model_validate(config_data)

    return settings


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Stream settings
    if env_host := os.environ.get("COOLSTREAM_HOST"):
        config_data.setdefault("stream", {})["host"] = env_host
    if env_port := os.environ.get("COOLSTREAM_PORT"):
        config_data.setdefault("stream", {})["port"] = int(env_port)
    if env_interval := os.environ.get("COOLSTREAM_FRAME_INTERVAL_MS"):
        config_data.setdefault("stream", {})["frame_interval_ms"] = int(env_interval)

    # Lifecycle settings
    if env_idle := os.environ.get("COOLSTREAM_IDLE_TIMEOUT"):
        config_data.setdefault("lifecycle", {})["idle_timeout_seconds"] = float(env_idle)

    # Source settings
    if env_backend := os.environ.get("COOLSTREAM_SOURCE_BACKEND"):
        config_data.setdefault("source", {})["backend"] = env_backend
    if env_device := os.environ.get("COOLSTREAM_DEVICE"):
        config_data.setdefault("source", {})["device"] = env_device.lower()

    # Control API settings
    if env_control := os.environ.get("COOLSTREAM_CONTROL_PORT"):
        config_data.setdefault("control", {})["port"] = int(env_control)
    if env_auto := os.environ.get("COOLSTREAM_AUTOSTART"):
        config_data.setdefault("control", {})["autostart_server"] = (
            env_auto.strip().lower() in ("1", "true", "yes", "on")
        )

    # Logging settings
    if env_log := os.environ.get("COOLSTREAM_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "thread": "%(threadName)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
