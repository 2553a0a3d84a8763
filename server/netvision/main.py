"""NetVision server: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, storage, auth, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from netvision.api.measurements import router as measurements_router
from netvision.api.monitoring import router as monitoring_router
from netvision.api.session import router as session_router
from netvision.api.spots import router as spots_router
from netvision.auth.static_tokens import StaticTokenVerifier
from netvision.config import AppConfig, load_config
from netvision.core.best_zone import BestZoneResolver
from netvision.core.registry import ConnectionRegistry
from netvision.core.stats import ServerStats
from netvision.storage.file_storage import FileMeasurementStore

log = structlog.get_logger()

VERSION = "0.1.0"

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: ServerStats | None = None
_store: FileMeasurementStore | None = None
_verifier: StaticTokenVerifier | None = None
_resolver: BestZoneResolver | None = None
_registry: ConnectionRegistry | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> ServerStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_store() -> FileMeasurementStore:
    assert _store is not None, "Server not initialized"
    return _store


def get_verifier() -> StaticTokenVerifier:
    assert _verifier is not None, "Server not initialized"
    return _verifier


def get_resolver() -> BestZoneResolver:
    assert _resolver is not None, "Server not initialized"
    return _resolver


def get_registry() -> ConnectionRegistry:
    assert _registry is not None, "Server not initialized"
    return _registry


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def build_components(config: AppConfig) -> None:
    """Create the singletons from a config. Used at startup and by tests."""
    global _config, _stats, _store, _verifier, _resolver, _registry

    _config = config
    _stats = ServerStats(active_window_seconds=config.limits.active_window_seconds)
    _store = FileMeasurementStore(base_dir=config.storage.base_dir)
    _verifier = StaticTokenVerifier(config.auth.tokens)
    _resolver = BestZoneResolver(
        _store,
        default_radius_m=config.geo.default_radius_m,
        max_radius_m=config.geo.max_radius_m,
        timeout_seconds=config.session.persist_timeout_seconds,
    )
    _registry = ConnectionRegistry()


def reset_components() -> None:
    global _config, _stats, _store, _verifier, _resolver, _registry

    _config = _stats = _store = _verifier = _resolver = _registry = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    if config.storage.backend != "file":
        raise ValueError(f"unsupported storage backend: {config.storage.backend}")

    log.info("server_starting",
             env=config.server.env,
             storage_dir=config.storage.base_dir,
             tokens=len(config.auth.tokens))

    build_components(config)

    log.info("server_started",
             host=config.server.host,
             port=config.server.port)

    yield

    # Shutdown
    notified = await get_registry().broadcast({
        "type": "shutdown",
        "message": "Server is shutting down, send stop before reconnecting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    log.info("server_stopped", sessions_notified=notified)


app = FastAPI(
    title="NetVision",
    description="Connectivity measurement and best-zone server",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=exc.headers,
    )


app.include_router(measurements_router)
app.include_router(monitoring_router)
app.include_router(session_router)
app.include_router(spots_router)
