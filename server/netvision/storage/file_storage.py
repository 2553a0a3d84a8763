"""File-based storage implementation.

Stores measurements as JSON Lines, one record per line.

Directory structure: base_dir/<user>/YYYY/MM/DD/measurements.jsonl
(partitioned by the measurement timestamp, UTC).

Queries scan the user's files in date order, so "first found" means the
oldest record. File I/O runs in a worker thread to keep the event loop free.

Saved spots live beside the partitions in base_dir/<user>/saved_spots.json,
rewritten whole (temp file + rename) on every change.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import structlog

from netvision.core import geo
from netvision.core.models import (
    Coordinate,
    Measurement,
    NetworkType,
    RadioMetrics,
    SavedSpot,
    SpeedMetrics,
)

log = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_FILE_NAME = "measurements.jsonl"
_SPOTS_FILE_NAME = "saved_spots.json"


def serialize_measurement(m: Measurement) -> dict:
    return {
        "user_id": m.user_id,
        "lat": m.coordinate.latitude,
        "lon": m.coordinate.longitude,
        "network_type": m.network_type.value,
        "quality_score": m.quality_score,
        "ts": m.timestamp.isoformat(),
        "radio": {
            "rsrq": m.radio.rsrq,
            "sinr": m.radio.sinr,
            "cqi": m.radio.cqi,
        } if m.radio else None,
        "speed": {
            "download": m.speed.download_mbps,
            "upload": m.speed.upload_mbps,
            "latency": m.speed.latency_ms,
        },
        "provider": m.provider,
    }


def deserialize_measurement(data: dict) -> Measurement:
    radio = data.get("radio")
    speed = data.get("speed") or {}
    return Measurement(
        user_id=data["user_id"],
        coordinate=Coordinate(latitude=data["lat"], longitude=data["lon"]),
        network_type=NetworkType(data.get("network_type", "unknown")),
        quality_score=data["quality_score"],
        timestamp=datetime.fromisoformat(data["ts"]),
        radio=RadioMetrics(rsrq=radio["rsrq"], sinr=radio["sinr"], cqi=radio["cqi"]) if radio else None,
        speed=SpeedMetrics(
            download_mbps=speed.get("download", 0.0),
            upload_mbps=speed.get("upload", 0.0),
            latency_ms=speed.get("latency", 0.0),
        ),
        provider=data.get("provider", "Other"),
    )


def serialize_spot(spot: SavedSpot) -> dict:
    return {
        "id": spot.spot_id,
        "user_id": spot.user_id,
        "name": spot.location_name,
        "lat": spot.coordinate.latitude,
        "lon": spot.coordinate.longitude,
        "quality_score": spot.quality_score,
        "notes": spot.notes,
        "ts": spot.timestamp.isoformat(),
    }


def deserialize_spot(data: dict) -> SavedSpot:
    return SavedSpot(
        spot_id=data["id"],
        user_id=data["user_id"],
        location_name=data["name"],
        coordinate=Coordinate(latitude=data["lat"], longitude=data["lon"]),
        timestamp=datetime.fromisoformat(data["ts"]),
        quality_score=data.get("quality_score"),
        notes=data.get("notes", ""),
    )


class FileMeasurementStore:
    """MeasurementStore and SpotStore backed by per-user files on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        # Guards the read-modify-write of spot files across worker threads.
        self._spots_lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _user_dir(self, user_id: str) -> Path:
        return self._base_dir / _UNSAFE_CHARS.sub("_", user_id)

    def _day_file(self, user_id: str, ts: datetime) -> Path:
        ts = ts.astimezone(timezone.utc)
        path = self._user_dir(user_id) / f"{ts.year:04d}" / f"{ts.month:02d}" / f"{ts.day:02d}"
        path.mkdir(parents=True, exist_ok=True)
        return path / _FILE_NAME

    def _write(self, user_id: str, measurements: list[Measurement]) -> None:
        by_file: dict[Path, list[str]] = {}
        for m in measurements:
            line = json.dumps(serialize_measurement(m), separators=(",", ":"))
            by_file.setdefault(self._day_file(user_id, m.timestamp), []).append(line)

        for path, lines in by_file.items():
            with open(path, "a") as f:
                f.write("\n".join(lines) + "\n")

    def _iter_records(self, user_id: str) -> Iterator[Measurement]:
        """Yield the user's measurements in storage order (oldest day first)."""
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return
        for path in sorted(user_dir.glob(f"*/*/*/{_FILE_NAME}")):
            with open(path) as f:
                for line_no, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = deserialize_measurement(json.loads(line))
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                        log.warning("corrupt_record_skipped", path=str(path), line=line_no)
                        continue
                    # The directory name is sanitized, so check the owner too.
                    if record.user_id == user_id:
                        yield record

    def _best_nearby(self, user_id: str, latitude: float, longitude: float,
                     radius_m: float) -> Measurement | None:
        best = None
        for record in self._iter_records(user_id):
            d = geo.distance(latitude, longitude,
                             record.coordinate.latitude, record.coordinate.longitude)
            if d > radius_m:
                continue
            # Strictly greater: ties keep the first record found.
            if best is None or record.quality_score > best.quality_score:
                best = record
        return best

    def _latest(self, user_id: str) -> Measurement | None:
        latest = None
        for record in self._iter_records(user_id):
            if latest is None or record.timestamp >= latest.timestamp:
                latest = record
        return latest

    def _history(self, user_id: str, limit: int, offset: int) -> tuple[list[Measurement], int]:
        records = sorted(self._iter_records(user_id), key=lambda r: r.timestamp, reverse=True)
        return records[offset:offset + limit], len(records)

    async def append(self, user_id: str, measurement: Measurement) -> None:
        """Store a single measurement to disk."""
        await asyncio.to_thread(self._write, user_id, [measurement])
        log.debug("measurement_written", user=user_id, score=measurement.quality_score)

    async def append_batch(self, user_id: str, measurements: list[Measurement]) -> int:
        """Store a batch of measurements. Returns the number written."""
        await asyncio.to_thread(self._write, user_id, list(measurements))
        log.debug("measurement_batch_written", user=user_id, count=len(measurements))
        return len(measurements)

    async def find_best_nearby(self, user_id: str, latitude: float, longitude: float,
                               radius_m: float) -> Measurement | None:
        return await asyncio.to_thread(self._best_nearby, user_id, latitude, longitude, radius_m)

    async def find_latest(self, user_id: str) -> Measurement | None:
        return await asyncio.to_thread(self._latest, user_id)

    async def history(self, user_id: str, limit: int, offset: int) -> tuple[list[Measurement], int]:
        return await asyncio.to_thread(self._history, user_id, limit, offset)

    # -- saved spots ------------------------------------------------------

    def _spots_file(self, user_id: str) -> Path:
        return self._user_dir(user_id) / _SPOTS_FILE_NAME

    def _read_spots(self, user_id: str) -> list[SavedSpot]:
        path = self._spots_file(user_id)
        if not path.exists():
            return []
        with open(path) as f:
            return [deserialize_spot(item) for item in json.load(f)]

    def _write_spots(self, user_id: str, spots: list[SavedSpot]) -> None:
        path = self._spots_file(user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump([serialize_spot(s) for s in spots], f, separators=(",", ":"))
        os.replace(tmp, path)

    def _save_spot(self, spot: SavedSpot) -> None:
        with self._spots_lock:
            spots = self._read_spots(spot.user_id)
            spots.append(spot)
            self._write_spots(spot.user_id, spots)

    def _delete_spot(self, user_id: str, spot_id: str) -> bool:
        with self._spots_lock:
            spots = self._read_spots(user_id)
            kept = [s for s in spots if not (s.spot_id == spot_id and s.user_id == user_id)]
            if len(kept) == len(spots):
                return False
            self._write_spots(user_id, kept)
            return True

    async def save_spot(self, spot: SavedSpot) -> None:
        await asyncio.to_thread(self._save_spot, spot)
        log.debug("spot_saved", user=spot.user_id, spot=spot.spot_id)

    async def list_spots(self, user_id: str) -> list[SavedSpot]:
        """The user's saved spots, newest first."""
        spots = await asyncio.to_thread(self._read_spots, user_id)
        own = [s for s in spots if s.user_id == user_id]
        return sorted(own, key=lambda s: s.timestamp, reverse=True)

    async def delete_spot(self, user_id: str, spot_id: str) -> bool:
        """Remove one of the user's spots. False if they have no such spot."""
        deleted = await asyncio.to_thread(self._delete_spot, user_id, spot_id)
        if deleted:
            log.debug("spot_deleted", user=user_id, spot=spot_id)
        return deleted
