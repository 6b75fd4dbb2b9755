# ============================================================================
# sniwatch/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines every tunable of the stream pipeline in one place: where the log
# websocket lives, how often the batcher flushes, how big the windows are,
# how long the ASN table stays warm, and where snapshots are kept.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: each section is an immutable value
# 2. Environment variables: every setting can be overridden (SNIWATCH_*)
# 3. Singleton: get_config() hands out one shared instance
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from sniwatch.base.exceptions import ConfigError, ErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# Stream Configuration
# ============================================================================
# Controls the log websocket and the batching cadence.

@dataclass(frozen=True)
class StreamConfig:
    # The appliance pushes one SNI log line per websocket frame on this path
    url: str = "ws://127.0.0.1:7000/api/ws/logs"

    # Seconds to wait after a drop before dialing again
    reconnect_delay: float = 3.0

    # Seconds between flush ticks (pending lines -> visible windows)
    flush_interval: float = 0.1

    # Most-recent lines kept per channel window (and per snapshot)
    window_size: int = 1000

    # Line appended to the raw log window when the transport errors
    error_marker: str = "[WS ERROR]"


# ============================================================================
# ASN Classifier Configuration
# ============================================================================

@dataclass(frozen=True)
class AsnConfig:
    # Seconds of inactivity after which the in-memory table and lookup cache
    # are dropped together
    ttl_seconds: float = 60.0

    # Storage key for the persisted ASN table
    storage_key: str = "asn_cache"


# ============================================================================
# Appliance API Configuration
# ============================================================================

@dataclass(frozen=True)
class ApiConfig:
    base_url: str = "http://127.0.0.1:7000"
    timeout: float = 10.0
    domain_path: str = "/api/geosite/domain"


# ============================================================================
# File Storage Configuration
# ============================================================================

@dataclass(frozen=True)
class StorageConfig:
    # Snapshots (window buffers, ASN table) and log files live here
    base_dir: Path = field(default_factory=lambda: Path.home() / ".sniwatch")

    # Subdirectory holding one JSON file per storage key
    snapshot_dir: str = "snapshots"

    @property
    def snapshot_path(self) -> Path:
        return self.base_dir / self.snapshot_dir


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = True
    file_name: str = "sniwatch.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass
class SniWatchConfig:
    stream: StreamConfig = field(default_factory=StreamConfig)
    asn: AsnConfig = field(default_factory=AsnConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False

    def __post_init__(self):
        if self.stream.window_size <= 0:
            raise ConfigError(
                ErrorCode.CONFIG_INVALID,
                "Window size must be positive",
                details={"window_size": self.stream.window_size},
            )
        if self.stream.flush_interval <= 0:
            raise ConfigError(
                ErrorCode.CONFIG_INVALID,
                "Flush interval must be positive",
                details={"flush_interval": self.stream.flush_interval},
            )

    def ensure_dirs(self) -> None:
        self.storage.base_dir.mkdir(parents=True, exist_ok=True)
        self.storage.snapshot_path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "SniWatchConfig":
        stream = StreamConfig(
            url=os.getenv("SNIWATCH_STREAM_URL", StreamConfig.url),
            reconnect_delay=_env("SNIWATCH_RECONNECT_DELAY", float, StreamConfig.reconnect_delay),
            flush_interval=_env("SNIWATCH_FLUSH_INTERVAL", float, StreamConfig.flush_interval),
            window_size=_env("SNIWATCH_WINDOW_SIZE", int, StreamConfig.window_size),
        )

        asn = AsnConfig(
            ttl_seconds=_env("SNIWATCH_ASN_TTL", float, AsnConfig.ttl_seconds),
        )

        api = ApiConfig(
            base_url=os.getenv("SNIWATCH_API_BASE", ApiConfig.base_url),
            timeout=_env("SNIWATCH_API_TIMEOUT", float, ApiConfig.timeout),
        )

        base_dir = Path(os.getenv("SNIWATCH_DATA_DIR", str(Path.home() / ".sniwatch"))).expanduser()
        storage = StorageConfig(base_dir=base_dir)

        log = LogConfig(
            level=os.getenv("SNIWATCH_LOG_LEVEL", "INFO"),
            file_enabled=os.getenv("SNIWATCH_LOG_FILE", "true").lower() == "true",
        )

        return cls(
            stream=stream,
            asn=asn,
            api=api,
            storage=storage,
            log=log,
            debug=os.getenv("SNIWATCH_DEBUG", "false").lower() == "true",
        )


def _env(name: str, cast: Callable[[str], T], default: T) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(
            ErrorCode.CONFIG_INVALID,
            f"Invalid value for {name}",
            details={"value": raw, "error": str(e)},
        ) from e


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[SniWatchConfig] = None


def get_config() -> SniWatchConfig:
    """
    Get the global configuration instance, loading it from the environment
    on first use.
    """
    global _config
    if _config is None:
        _config = SniWatchConfig.from_env()
    return _config


def set_config(config: Optional[SniWatchConfig]) -> None:
    """Replace the global configuration (mainly used for testing)."""
    global _config
    _config = config


def setup_logging(config: Optional[SniWatchConfig] = None) -> None:
    """
    Configure console logging, plus a rotating file under the data dir when
    file logging is enabled. Call once at startup.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        try:
            cfg.ensure_dirs()
            file_handler = RotatingFileHandler(
                cfg.storage.base_dir / cfg.log.file_name,
                maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
                backupCount=cfg.log.backup_count,
            )
            handlers.append(file_handler)
        except OSError as e:
            logger.warning(f"[Config] File logging disabled: {e}")

    level = "DEBUG" if cfg.debug else cfg.log.level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
