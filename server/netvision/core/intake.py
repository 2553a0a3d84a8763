"""Measurement intake: validates a raw sample and scores it.

Shared by the HTTP record path and the session engine so both produce the
same Measurement, score and diagnostic message for the same input.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from netvision.core import geo, scoring
from netvision.core.errors import InvalidInputError
from netvision.core.models import (
    Coordinate,
    Measurement,
    NetworkType,
    RadioMetrics,
    SpeedMetrics,
)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_coordinate(latitude: object, longitude: object) -> Coordinate:
    if not geo.is_valid_coordinate(latitude, longitude):
        raise InvalidInputError("Invalid coordinates")
    return Coordinate(latitude=float(latitude), longitude=float(longitude))


def _parse_network_type(value: object) -> NetworkType:
    if value is None:
        return NetworkType.UNKNOWN
    try:
        return NetworkType(value)
    except ValueError:
        raise InvalidInputError(f"Invalid network type: {value}") from None


def _parse_speed_value(payload: dict, key: str) -> float:
    value = payload.get(key)
    if value is None:
        return 0.0
    if not _is_number(value) or not math.isfinite(value) or value < 0:
        raise InvalidInputError(f"{key} must be a non-negative number")
    return float(value)


def _parse_timestamp(value: object, now: datetime) -> datetime:
    """Client timestamp (ISO-8601 or epoch ms) if usable, else server time."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return now
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if _is_number(value) and math.isfinite(value) and value > 0:
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return now
    return now


def evaluate_sample(user_id: str, payload: dict, now: datetime | None = None) -> tuple[Measurement, str]:
    """Validate and score one sample. Returns (measurement, human message).

    Raises InvalidInputError with a client-facing reason.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    coordinate = parse_coordinate(payload.get("latitude"), payload.get("longitude"))
    network_type = _parse_network_type(payload.get("networkType"))
    speed = SpeedMetrics(
        download_mbps=_parse_speed_value(payload, "downloadSpeed"),
        upload_mbps=_parse_speed_value(payload, "uploadSpeed"),
        latency_ms=_parse_speed_value(payload, "latency"),
    )

    radio = None
    if network_type is NetworkType.WIFI:
        score = scoring.score_wifi(speed.download_mbps, speed.upload_mbps, speed.latency_ms)
        message = scoring.wifi_message(score, speed.download_mbps, speed.upload_mbps, speed.latency_ms)
    else:
        rsrq, sinr, cqi = payload.get("rsrq"), payload.get("sinr"), payload.get("cqi")
        scoring.validate_radio_metrics(rsrq, sinr, cqi)
        radio = RadioMetrics(rsrq=rsrq, sinr=sinr, cqi=cqi)
        if speed.download_mbps > 0 or speed.upload_mbps > 0:
            score = scoring.score_cellular_enhanced(rsrq, sinr, cqi, speed.download_mbps, speed.upload_mbps)
        else:
            score = scoring.score_cellular(rsrq, sinr, cqi)
        message = scoring.cellular_message(score, rsrq, sinr, cqi)

    provider = payload.get("provider")
    measurement = Measurement(
        user_id=user_id,
        coordinate=coordinate,
        network_type=network_type,
        quality_score=score,
        timestamp=_parse_timestamp(payload.get("timestamp"), now),
        radio=radio,
        speed=speed,
        provider=provider if isinstance(provider, str) and provider else "Other",
    )
    return measurement, message
