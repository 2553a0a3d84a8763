"""NetVision server: core internal data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class NetworkType(str, Enum):
    CELLULAR = "cellular"
    WIFI = "wifi"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RadioMetrics:
    rsrq: float
    sinr: float
    cqi: float


@dataclass(frozen=True)
class SpeedMetrics:
    download_mbps: float = 0.0
    upload_mbps: float = 0.0
    latency_ms: float = 0.0


@dataclass(frozen=True)
class Measurement:
    user_id: str
    coordinate: Coordinate
    network_type: NetworkType
    quality_score: int
    timestamp: datetime
    radio: RadioMetrics | None = None
    speed: SpeedMetrics = field(default_factory=SpeedMetrics)
    provider: str = "Other"

    def metrics_dict(self) -> dict:
        """Echoed metrics, in the client's wire format."""
        return {
            "rsrq": self.radio.rsrq if self.radio else None,
            "sinr": self.radio.sinr if self.radio else None,
            "cqi": self.radio.cqi if self.radio else None,
            "downloadSpeed": self.speed.download_mbps,
            "uploadSpeed": self.speed.upload_mbps,
            "latency": self.speed.latency_ms,
        }


@dataclass(frozen=True)
class SavedSpot:
    """A place the user bookmarked for its connectivity."""
    spot_id: str
    user_id: str
    location_name: str
    coordinate: Coordinate
    timestamp: datetime
    quality_score: int | None = None
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.spot_id,
            "locationName": self.location_name,
            "location": {
                "latitude": self.coordinate.latitude,
                "longitude": self.coordinate.longitude,
            },
            "qualityScore": self.quality_score,
            "notes": self.notes,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class BestZoneResult:
    has_data: bool
    bearing: int = 0
    direction: str = ""
    distance: float = 0.0
    distance_formatted: str = ""
    quality_score: int = 0
    location: Coordinate | None = None
    recommendation: str = ""

    def to_dict(self) -> dict:
        if not self.has_data:
            return {"hasData": False}
        return {
            "hasData": True,
            "bearing": self.bearing,
            "direction": self.direction,
            "distance": self.distance,
            "distanceFormatted": self.distance_formatted,
            "qualityScore": self.quality_score,
            "location": {
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
            } if self.location else None,
            "recommendation": self.recommendation,
        }


NO_DATA = BestZoneResult(has_data=False)
