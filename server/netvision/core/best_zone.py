"""Best-zone resolver: points the user at their best recorded spot nearby.

Stateless over the record store: every call re-reads the store, so it is
safe to share one resolver across sessions and requests.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from netvision.core import geo
from netvision.core.errors import InvalidInputError, StoreUnavailableError
from netvision.core.models import NO_DATA, BestZoneResult, Coordinate

if TYPE_CHECKING:
    from netvision.storage.base import MeasurementStore

log = structlog.get_logger()

DEFAULT_RADIUS_M = 5_000.0
MAX_RADIUS_M = 50_000.0

# At or below this distance the target is described as "nearby".
NEARBY_THRESHOLD_M = 100.0


def build_recommendation(direction: str, bearing_deg: int, distance_m: float, score: int) -> str:
    where = "nearby" if distance_m <= NEARBY_THRESHOLD_M else geo.format_distance(distance_m)
    return f"Move {direction} ({bearing_deg}°) for {where} better signal (quality {score}/100)"


class BestZoneResolver:
    """Finds the highest-scoring stored measurement within a search radius."""

    def __init__(
        self,
        store: MeasurementStore,
        default_radius_m: float = DEFAULT_RADIUS_M,
        max_radius_m: float = MAX_RADIUS_M,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._default_radius = default_radius_m
        self._max_radius = max_radius_m
        self._timeout = timeout_seconds

    def effective_radius(self, radius_m: float | None) -> float:
        if radius_m is None or radius_m == 0:
            return min(self._default_radius, self._max_radius)
        if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)) or not radius_m > 0:
            raise InvalidInputError("Search radius must be a positive number of meters")
        return min(float(radius_m), self._max_radius)

    async def find_best_zone(
        self, user_id: str, current: Coordinate, radius_m: float | None = None,
    ) -> BestZoneResult:
        if not geo.is_valid_coordinate(current.latitude, current.longitude):
            raise InvalidInputError("Invalid coordinates")
        radius = self.effective_radius(radius_m)

        try:
            best = await asyncio.wait_for(
                self._store.find_best_nearby(user_id, current.latitude, current.longitude, radius),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            log.error("best_zone_lookup_timeout", user=user_id, timeout=self._timeout)
            raise StoreUnavailableError("Record store timed out") from None
        except Exception as exc:
            log.error("best_zone_lookup_failed", user=user_id, exc_info=True)
            raise StoreUnavailableError(f"Record store unavailable: {exc}") from exc

        if best is None:
            return NO_DATA

        target = best.coordinate
        distance_m = geo.distance(current.latitude, current.longitude, target.latitude, target.longitude)
        bearing_deg = geo.bearing(current.latitude, current.longitude, target.latitude, target.longitude)
        direction = geo.compass_direction(bearing_deg)

        return BestZoneResult(
            has_data=True,
            bearing=bearing_deg,
            direction=direction,
            distance=distance_m,
            distance_formatted=geo.format_distance(distance_m),
            quality_score=best.quality_score,
            location=target,
            recommendation=build_recommendation(direction, bearing_deg, distance_m, best.quality_score),
        )
