"""Storage interface (port) for persisting and querying measurements."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from netvision.core.models import Measurement, SavedSpot


class MeasurementStore(Protocol):
    """Port: append-mostly geospatial record store, partitioned by user."""

    async def append(self, user_id: str, measurement: Measurement) -> None: ...

    async def append_batch(self, user_id: str, measurements: list[Measurement]) -> int: ...

    async def find_best_nearby(
        self, user_id: str, latitude: float, longitude: float, radius_m: float,
    ) -> Measurement | None: ...

    async def find_latest(self, user_id: str) -> Measurement | None: ...

    async def history(self, user_id: str, limit: int, offset: int) -> tuple[list[Measurement], int]: ...


class SpotStore(Protocol):
    """Port: per-user bookmarked spots."""

    async def save_spot(self, spot: SavedSpot) -> None: ...

    async def list_spots(self, user_id: str) -> list[SavedSpot]: ...

    async def delete_spot(self, user_id: str, spot_id: str) -> bool: ...
