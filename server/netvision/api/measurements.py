"""Measurement API endpoints.

Thin FastAPI adapter around the core: parses JSON bodies, resolves the
bearer token to a user, calls intake / resolver / store, and maps core
errors to status codes (400 input, 401 auth, 503 collaborator).
"""

from __future__ import annotations

import asyncio
import json
from typing import Awaitable, TypeVar

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from netvision.auth.base import verify_token
from netvision.core import scoring
from netvision.core.errors import (
    AuthenticationError,
    AuthUnavailableError,
    InvalidInputError,
    StoreUnavailableError,
)
from netvision.core.intake import evaluate_sample, parse_coordinate
from netvision.core.models import Coordinate, Measurement

router = APIRouter(prefix="/api/v1")

log = structlog.get_logger()

T = TypeVar("T")


async def require_user(request: Request) -> str:
    """Resolve ``Authorization: Bearer <token>`` to a user id."""
    from netvision.main import get_config, get_stats, get_verifier

    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        return await verify_token(get_verifier(), token.strip(), get_config().auth.timeout_seconds)
    except AuthenticationError as exc:
        get_stats().record_auth_failure()
        raise HTTPException(status_code=401, detail=exc.reason) from None
    except AuthUnavailableError:
        raise HTTPException(status_code=503, detail="Authentication service unavailable") from None


async def _read_json(request: Request) -> dict:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="invalid JSON") from None
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="request body must be a JSON object")
    return body


async def _store_call(awaitable: Awaitable[T], what: str) -> T:
    """Await a record-store call with the configured timeout."""
    from netvision.main import get_config, get_stats

    try:
        return await asyncio.wait_for(awaitable, timeout=get_config().session.persist_timeout_seconds)
    except Exception:
        log.error("store_call_failed", operation=what, exc_info=True)
        get_stats().record_storage_error()
        raise HTTPException(status_code=503, detail="Record store unavailable") from None


async def _best_zone(user_id: str, coordinate: Coordinate, radius: float | None = None):
    from netvision.main import get_resolver

    try:
        return await get_resolver().find_best_zone(user_id, coordinate, radius)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="Record store unavailable") from None


def measurement_to_dict(m: Measurement) -> dict:
    return {
        "location": {
            "latitude": m.coordinate.latitude,
            "longitude": m.coordinate.longitude,
        },
        "qualityScore": m.quality_score,
        "qualityTier": scoring.classify(m.quality_score).value,
        "networkType": m.network_type.value,
        "metrics": m.metrics_dict(),
        "provider": m.provider,
        "timestamp": m.timestamp.isoformat(),
    }


@router.post("/measurements")
async def record_measurement(request: Request, user_id: str = Depends(require_user)) -> JSONResponse:
    """Score one measurement and recommend a best zone.

    With ``saveImmediately`` (or the older ``saveOnStop``) set, the
    measurement is also persisted before the best zone is looked up.
    """
    from netvision.main import get_store, get_stats

    body = await _read_json(request)
    stats = get_stats()

    save = body.get("saveImmediately", body.get("saveOnStop"))
    if save is None:
        save = False
    elif not isinstance(save, bool):
        raise HTTPException(status_code=400, detail="saveImmediately must be true or false")

    try:
        measurement, human_message = evaluate_sample(user_id, body)
    except InvalidInputError as exc:
        stats.record_rejected()
        raise HTTPException(status_code=400, detail=str(exc)) from None
    stats.record_measurement(user_id, streaming=False)

    if save:
        await _store_call(get_store().append(user_id, measurement), "append")
        stats.record_stored(1)

    zone = await _best_zone(user_id, measurement.coordinate)
    log.info("measurement_recorded", user=user_id, score=measurement.quality_score, saved=save)

    return JSONResponse(content={
        "success": True,
        "message": "Measurement recorded",
        "data": {
            "qualityScore": measurement.quality_score,
            "qualityTier": scoring.classify(measurement.quality_score).value,
            "humanMessage": human_message,
            "networkType": measurement.network_type.value,
            "bestZone": zone.to_dict(),
            "metrics": measurement.metrics_dict(),
            "saved": save,
        },
    })


@router.post("/best-zone")
async def find_best_zone(request: Request, user_id: str = Depends(require_user)) -> JSONResponse:
    """Best recorded spot within ``radius`` meters (default 5 km, max 50 km)."""
    body = await _read_json(request)
    try:
        coordinate = parse_coordinate(body.get("latitude"), body.get("longitude"))
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None

    zone = await _best_zone(user_id, coordinate, body.get("radius"))
    return JSONResponse(content={"success": True, "data": zone.to_dict()})


@router.get("/offline-fallback")
async def offline_fallback(
    latitude: float | None = Query(default=None),
    longitude: float | None = Query(default=None),
    user_id: str = Depends(require_user),
) -> JSONResponse:
    """Where to go when there is no signal at all.

    Searches around the given position or, without one, around the user's
    last recorded spot.
    """
    from netvision.main import get_store

    if latitude is not None and longitude is not None:
        try:
            origin = parse_coordinate(latitude, longitude)
        except InvalidInputError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from None
    else:
        last = await _store_call(get_store().find_latest(user_id), "find_latest")
        origin = last.coordinate if last else None

    zone = await _best_zone(user_id, origin) if origin else None
    if zone is None or not zone.has_data:
        return JSONResponse(content={
            "success": True,
            "data": {"hasData": False, "message": "No offline zones available"},
        })

    name = f"{zone.location.latitude:.5f}, {zone.location.longitude:.5f}"
    return JSONResponse(content={
        "success": True,
        "data": {
            "hasData": True,
            "message": scoring.offline_message(name, zone.bearing, zone.distance, zone.quality_score),
            "zone": zone.to_dict(),
        },
    })


@router.get("/measurements/last")
async def last_spot(user_id: str = Depends(require_user)) -> JSONResponse:
    """The user's most recent stored measurement."""
    from netvision.main import get_store

    last = await _store_call(get_store().find_latest(user_id), "find_latest")
    if last is None:
        raise HTTPException(status_code=404, detail="No data found")
    return JSONResponse(content={"success": True, "data": measurement_to_dict(last)})


@router.get("/measurements")
async def history(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user),
) -> JSONResponse:
    """Stored measurements, newest first."""
    from netvision.main import get_store

    records, total = await _store_call(get_store().history(user_id, limit, offset), "history")
    return JSONResponse(content={
        "success": True,
        "data": [measurement_to_dict(m) for m in records],
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "pages": -(-total // limit),
        },
    })
