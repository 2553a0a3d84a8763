"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: NETVISION_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    backend: str = "file"
    base_dir: str = "data/measurements"


@dataclass
class AuthConfig:
    # Opaque API token -> user id.
    tokens: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 5.0


@dataclass
class SessionConfig:
    heartbeat_interval_seconds: float = 30.0
    persist_timeout_seconds: float = 10.0
    max_message_bytes: int = 1_048_576


@dataclass
class GeoConfig:
    default_radius_m: float = 5_000.0
    max_radius_m: float = 50_000.0


@dataclass
class LimitsConfig:
    active_window_seconds: float = 120.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    geo: GeoConfig = field(default_factory=GeoConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def parse_token_map(value: str) -> dict[str, str]:
    """Parse ``token:user,token:user`` into a token -> user id map."""
    tokens = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, sep, user_id = pair.partition(":")
        if not sep or not token or not user_id:
            raise ValueError(f"malformed token entry: {pair!r}")
        tokens[token.strip()] = user_id.strip()
    return tokens


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "NETVISION_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "NETVISION_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "NETVISION_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "NETVISION_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "NETVISION_STORAGE_BASE_DIR": lambda v: setattr(config.storage, "base_dir", v),
        "NETVISION_AUTH_TOKENS": lambda v: setattr(config.auth, "tokens", parse_token_map(v)),
        "NETVISION_AUTH_TIMEOUT": lambda v: setattr(config.auth, "timeout_seconds", float(v)),
        "NETVISION_SESSION_HEARTBEAT_INTERVAL": lambda v: setattr(
            config.session, "heartbeat_interval_seconds", float(v)),
        "NETVISION_SESSION_PERSIST_TIMEOUT": lambda v: setattr(
            config.session, "persist_timeout_seconds", float(v)),
        "NETVISION_SESSION_MAX_MESSAGE_BYTES": lambda v: setattr(
            config.session, "max_message_bytes", int(v)),
        "NETVISION_GEO_DEFAULT_RADIUS": lambda v: setattr(config.geo, "default_radius_m", float(v)),
        "NETVISION_GEO_MAX_RADIUS": lambda v: setattr(config.geo, "max_radius_m", float(v)),
        "NETVISION_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "NETVISION_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "NETVISION_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in ("server", "storage", "auth", "session", "geo", "limits", "logging"):
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
