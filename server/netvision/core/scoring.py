"""Quality scoring: radio and speed metrics to a 0-100 score.

Cellular:  score = SINR*0.5 + (CQI/15*100)*0.3 - |RSRQ|*0.2
Enhanced:  score = cellular*0.5 + download_term*0.3 + upload_term*0.2
Wi-Fi:     score = download_term*0.5 + upload_term*0.3 + latency_term*0.2

Every score is clamped to [0, 100] and rounded half-up to an integer.
"""

from __future__ import annotations

import math
from enum import Enum

from netvision.core import geo
from netvision.core.errors import InvalidInputError

MIN_SCORE = 0
MAX_SCORE = 100

SINR_WEIGHT = 0.5
CQI_WEIGHT = 0.3
RSRQ_WEIGHT = 0.2

# Inclusive (min, max) ranges of typical LTE/5G readings.
RSRQ_RANGE = (-20.0, -3.0)
SINR_RANGE = (-10.0, 30.0)
CQI_RANGE = (0, 15)

# Speeds at which the download/upload terms saturate.
DOWNLOAD_REFERENCE_MBPS = 100.0
UPLOAD_REFERENCE_MBPS = 50.0
# Latency at which the latency term reaches zero.
LATENCY_CEILING_MS = 200.0


class QualityTier(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    VERY_POOR = "Very Poor"


# Lower bounds, inclusive, checked top-down.
_TIER_THRESHOLDS = (
    (80, QualityTier.EXCELLENT),
    (60, QualityTier.GOOD),
    (40, QualityTier.FAIR),
    (20, QualityTier.POOR),
)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finalize(raw: float) -> int:
    clamped = max(MIN_SCORE, min(MAX_SCORE, raw))
    return int(math.floor(clamped + 0.5))


def _speed_term(mbps: float, reference: float) -> float:
    return min(100.0, (mbps / reference) * 100)


def validate_radio_metrics(rsrq: object, sinr: object, cqi: object) -> None:
    """Raise InvalidInputError unless all three metrics are numbers in range."""
    if not (_is_number(rsrq) and _is_number(sinr) and _is_number(cqi)):
        raise InvalidInputError("Invalid radio metrics - must be numbers")
    if not RSRQ_RANGE[0] <= rsrq <= RSRQ_RANGE[1]:
        raise InvalidInputError("RSRQ out of range: -20 to -3")
    if not SINR_RANGE[0] <= sinr <= SINR_RANGE[1]:
        raise InvalidInputError("SINR out of range: -10 to 30")
    if not CQI_RANGE[0] <= cqi <= CQI_RANGE[1]:
        raise InvalidInputError("CQI out of range: 0 to 15")


def score_cellular(rsrq: float, sinr: float, cqi: float) -> int:
    """Quality score from radio metrics alone."""
    validate_radio_metrics(rsrq, sinr, cqi)

    sinr_term = sinr * SINR_WEIGHT
    cqi_term = (cqi / CQI_RANGE[1]) * 100 * CQI_WEIGHT
    rsrq_penalty = abs(rsrq) * RSRQ_WEIGHT
    return _finalize(sinr_term + cqi_term - rsrq_penalty)


def score_cellular_enhanced(rsrq: float, sinr: float, cqi: float,
                            download_mbps: float = 0.0, upload_mbps: float = 0.0) -> int:
    """Cellular score blended with measured throughput."""
    base = score_cellular(rsrq, sinr, cqi)
    download = _speed_term(download_mbps, DOWNLOAD_REFERENCE_MBPS)
    upload = _speed_term(upload_mbps, UPLOAD_REFERENCE_MBPS)
    return _finalize(base * 0.5 + download * 0.3 + upload * 0.2)


def score_wifi(download_mbps: float = 0.0, upload_mbps: float = 0.0, latency_ms: float = 0.0) -> int:
    """Wi-Fi score from speed and latency; radio metrics are not consulted."""
    download = _speed_term(download_mbps, DOWNLOAD_REFERENCE_MBPS)
    upload = _speed_term(upload_mbps, UPLOAD_REFERENCE_MBPS)
    latency = max(0.0, 100 - (latency_ms / LATENCY_CEILING_MS) * 100)
    return _finalize(download * 0.5 + upload * 0.3 + latency * 0.2)


def classify(score: float) -> QualityTier:
    for threshold, tier in _TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return QualityTier.VERY_POOR


def cellular_message(score: int, rsrq: float, sinr: float, cqi: float) -> str:
    """Human-friendly diagnosis of a cellular reading."""
    clauses = [f"Your connection is {classify(score).value.lower()}"]

    if abs(rsrq) < 10:
        clauses.append("Signal strength is strong")
    elif abs(rsrq) < 15:
        clauses.append("Signal strength is moderate")
    else:
        clauses.append("Signal strength is weak")

    if sinr > 10:
        clauses.append("Noise levels are low")
    elif sinr > 0:
        clauses.append("Noise levels are moderate")
    else:
        clauses.append("Noise levels are high")

    if cqi >= 12:
        clauses.append("Channel quality is excellent")
    elif cqi >= 8:
        clauses.append("Channel quality is good")
    elif cqi >= 4:
        clauses.append("Channel quality is fair")
    else:
        clauses.append("Channel quality is poor")

    if score < 40:
        if sinr < 0:
            clauses.append("Consider moving to reduce interference")
        if abs(rsrq) > 12:
            clauses.append("Try getting closer to a cell tower")
    elif score >= 80:
        clauses.append("This is a great location for connectivity")

    return ". ".join(clauses) + "."


def wifi_message(score: int, download_mbps: float, upload_mbps: float, latency_ms: float) -> str:
    """Human-friendly diagnosis of a Wi-Fi reading."""
    if download_mbps >= 50 and upload_mbps >= 25:
        speed = "Excellent Wi-Fi speeds."
    elif download_mbps >= 25 and upload_mbps >= 10:
        speed = "Good Wi-Fi speeds."
    elif download_mbps >= 10 and upload_mbps >= 5:
        speed = "Moderate Wi-Fi speeds."
    else:
        speed = "Slow speeds detected."

    if latency_ms <= 20:
        latency = "Excellent response time."
    elif latency_ms <= 50:
        latency = "Good response time."
    elif latency_ms <= 100:
        latency = "Moderate response time."
    else:
        latency = "High latency may affect real-time applications."

    return f"Your Wi-Fi connection is {classify(score).value.lower()}. {speed} {latency}"


def offline_message(location_name: str, bearing_deg: int, distance_m: float, score: int) -> str:
    """Message shown when the client has no connectivity at all."""
    direction = geo.compass_direction(bearing_deg)
    return (
        f"You are offline. The latest best availability zone is {location_name}, "
        f"bearing {bearing_deg}° ({direction}), distance {geo.format_distance(distance_m)}. "
        f"Expected quality: {score}/100."
    )


def score_trend(scores: list[int]) -> dict:
    """Average, range and direction of a series of scores.

    Compares the mean of the last five scores against the first five; a
    difference of more than 5 points counts as a trend.
    """
    if not scores:
        return {"trend": "insufficient", "average": 0}

    average = sum(scores) / len(scores)
    trend = "stable"
    if len(scores) >= 2:
        recent = scores[-5:]
        older = scores[:5]
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older)
        if recent_avg > older_avg + 5:
            trend = "improving"
        elif recent_avg < older_avg - 5:
            trend = "degrading"

    return {
        "trend": trend,
        "average": average,
        "min": min(scores),
        "max": max(scores),
    }
