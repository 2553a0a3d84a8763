"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import netvision.main as main_module
from netvision.auth.static_tokens import StaticTokenVerifier
from netvision.config import AppConfig
from netvision.core.best_zone import BestZoneResolver
from netvision.core.models import Coordinate, Measurement, NetworkType, RadioMetrics
from netvision.core.registry import ConnectionRegistry
from netvision.core.session import MeasurementSession
from netvision.core.stats import ServerStats

TOKENS = {"token-alice": "alice", "token-bob": "bob"}


def auth_headers(token: str = "token-alice") -> dict:
    return {"authorization": f"Bearer {token}"}


def make_measurement(lat: float, lon: float, score: int, user_id: str = "alice",
                     ts: datetime | None = None) -> Measurement:
    return Measurement(
        user_id=user_id,
        coordinate=Coordinate(latitude=lat, longitude=lon),
        network_type=NetworkType.CELLULAR,
        quality_score=score,
        timestamp=ts or datetime.now(timezone.utc),
        radio=RadioMetrics(rsrq=-10, sinr=10, cqi=8),
    )


class FakeStore:
    """In-memory MeasurementStore that records every call."""

    def __init__(self, best: Measurement | None = None) -> None:
        self.best = best
        self.appended: list[tuple[str, Measurement]] = []
        self.batches: list[tuple[str, list[Measurement]]] = []
        self.nearby_queries: list[tuple[str, float, float, float]] = []
        self.fail_batch = False
        self.fail_lookup = False
        self.batch_delay = 0.0

    async def append(self, user_id, measurement):
        self.appended.append((user_id, measurement))

    async def append_batch(self, user_id, measurements):
        if self.batch_delay:
            await asyncio.sleep(self.batch_delay)
        if self.fail_batch:
            raise OSError("disk full")
        self.batches.append((user_id, list(measurements)))
        return len(measurements)

    async def find_best_nearby(self, user_id, latitude, longitude, radius_m):
        self.nearby_queries.append((user_id, latitude, longitude, radius_m))
        if self.fail_lookup:
            raise ConnectionError("store offline")
        return self.best

    async def find_latest(self, user_id):
        return None

    async def history(self, user_id, limit, offset):
        return [], 0


class BrokenVerifier:
    async def verify(self, token):
        raise ConnectionError("auth backend down")


class SlowVerifier:
    async def verify(self, token):
        await asyncio.sleep(5)
        return "alice"


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def make_session(fake_store, registry):
    """Factory for sessions wired to fakes; no socket involved."""
    created = []

    def _make(store=None, verifier=None, **kwargs) -> MeasurementSession:
        store = store or fake_store
        kwargs.setdefault("stats", ServerStats())
        session = MeasurementSession(
            store=store,
            verifier=verifier or StaticTokenVerifier(TOKENS),
            resolver=BestZoneResolver(store),
            registry=registry,
            **kwargs,
        )
        created.append(session)
        return session

    yield _make

    for session in created:
        session.close()


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.base_dir = str(tmp_path / "data")
    config.auth.tokens = dict(TOKENS)
    config.logging.level = "warning"

    main_module.build_components(config)

    yield

    main_module.reset_components()


@pytest.fixture
async def client():
    from netvision.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def ws_client():
    from starlette.testclient import TestClient

    from netvision.main import app

    # Not used as a context manager: the lifespan would replace the
    # singletons set up by _init_server.
    return TestClient(app)
