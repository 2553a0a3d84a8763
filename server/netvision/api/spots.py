"""Saved spot endpoints: places a user bookmarks for their connectivity."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from netvision.api.measurements import _read_json, _store_call, require_user
from netvision.core.best_zone import NEARBY_THRESHOLD_M
from netvision.core.errors import InvalidInputError
from netvision.core.intake import parse_coordinate
from netvision.core.models import SavedSpot

router = APIRouter(prefix="/api/v1")

log = structlog.get_logger()

MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 500


def _text_field(body: dict, key: str, max_length: int, *, required: bool) -> str:
    value = body.get(key)
    if value is None and not required:
        return ""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{key} must be a string")
    value = value.strip()
    if required and not value:
        raise HTTPException(status_code=400, detail=f"{key} is required")
    if len(value) > max_length:
        raise HTTPException(status_code=400, detail=f"{key} must be at most {max_length} characters")
    return value


@router.post("/saved-spots")
async def save_spot(request: Request, user_id: str = Depends(require_user)) -> JSONResponse:
    """Bookmark a location.

    The spot's quality is the best score the user recorded within 100 m of
    it, or null when there is none.
    """
    from netvision.main import get_store

    body = await _read_json(request)
    try:
        coordinate = parse_coordinate(body.get("latitude"), body.get("longitude"))
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    name = _text_field(body, "locationName", MAX_NAME_LENGTH, required=True)
    notes = _text_field(body, "notes", MAX_NOTES_LENGTH, required=False)

    store = get_store()
    nearest = await _store_call(
        store.find_best_nearby(user_id, coordinate.latitude, coordinate.longitude, NEARBY_THRESHOLD_M),
        "find_best_nearby",
    )
    spot = SavedSpot(
        spot_id=uuid.uuid4().hex,
        user_id=user_id,
        location_name=name,
        coordinate=coordinate,
        timestamp=datetime.now(timezone.utc),
        quality_score=nearest.quality_score if nearest else None,
        notes=notes,
    )
    await _store_call(store.save_spot(spot), "save_spot")
    log.info("spot_saved", user=user_id, spot=spot.spot_id)

    return JSONResponse(status_code=201, content={
        "success": True,
        "message": "Spot saved successfully",
        "data": spot.to_dict(),
    })


@router.get("/saved-spots")
async def list_spots(user_id: str = Depends(require_user)) -> JSONResponse:
    """The user's saved spots, newest first."""
    from netvision.main import get_store

    spots = await _store_call(get_store().list_spots(user_id), "list_spots")
    return JSONResponse(content={"success": True, "data": [s.to_dict() for s in spots]})


@router.delete("/saved-spots/{spot_id}")
async def delete_spot(spot_id: str, user_id: str = Depends(require_user)) -> JSONResponse:
    from netvision.main import get_store

    if not await _store_call(get_store().delete_spot(user_id, spot_id), "delete_spot"):
        raise HTTPException(status_code=404, detail="Spot not found")
    log.info("spot_deleted", user=user_id, spot=spot_id)
    return JSONResponse(content={"success": True, "message": "Spot deleted successfully"})
