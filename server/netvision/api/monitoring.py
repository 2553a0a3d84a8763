"""Health check and monitoring endpoints."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path

from fastapi import APIRouter

from netvision.core import scoring

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from netvision.main import VERSION, get_config, get_registry, get_stats

    stats = get_stats()
    config = get_config()

    storage_path = Path(config.storage.base_dir)
    try:
        disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
        disk_free_gb = round(disk.free / (1024 ** 3), 1)
    except OSError:
        disk_free_gb = -1
    storage_writable = storage_path.is_dir() and os.access(storage_path, os.W_OK)

    snapshot = stats.snapshot()
    result = {
        "status": "ok" if storage_writable else "degraded",
        "version": VERSION,
        "uptime_seconds": snapshot["uptime_seconds"],
        "live_sessions": len(get_registry()),
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Detailed server statistics including active user counts.

    The ``active_users`` section shows:
    - ``total``: users seen in the last N seconds (configurable window)
    - ``stream``: users currently measuring over a WebSocket session
    - ``single``: users who last used the single-measurement endpoint
    - ``window_seconds``: the time window used for "active" calculation
    """
    from netvision.main import get_registry, get_stats

    snapshot = get_stats().snapshot()
    snapshot["live_sessions"] = len(get_registry())
    return snapshot


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for the mobile app.

    The app calls this on startup to get server-controlled parameters.
    """
    from netvision.main import get_config

    config = get_config()
    return {
        "heartbeat_interval_seconds": config.session.heartbeat_interval_seconds,
        "max_message_bytes": config.session.max_message_bytes,
        "default_radius_m": config.geo.default_radius_m,
        "max_radius_m": config.geo.max_radius_m,
        "radio_ranges": {
            "rsrq": list(scoring.RSRQ_RANGE),
            "sinr": list(scoring.SINR_RANGE),
            "cqi": list(scoring.CQI_RANGE),
        },
    }
