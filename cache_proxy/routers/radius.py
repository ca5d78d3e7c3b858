from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from cache_proxy.geo import grid_key, valid_coords
from cache_proxy.radius_hints import SearchOutcome

_TRUE = ("true", "1")
_FALSE = ("false", "0")


def _coords(lat, lon) -> tuple[float, float]:
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise HTTPException(400, "lat and lon required")
    if not valid_coords(lat, lon):
        raise HTTPException(400, "lat must be within [-90, 90] and lon within [-180, 180]")
    return lat, lon


def _flag(body: dict, name: str) -> bool:
    """JSON booleans, 0/1, or the strings "true"/"false"/"1"/"0"."""
    value = body.get(name, False)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise HTTPException(400, f"{name} must be a boolean")


def build_radius_router(*, hints):
    router = APIRouter()

    @router.get("/radius-hint")
    async def get_radius_hint(lat: Optional[str] = Query(None), lon: Optional[str] = Query(None)):
        lat, lon = _coords(lat, lon)
        return {"radius": hints.get_hint(lat, lon)}

    @router.post("/radius-hint")
    async def post_radius_hint(request: Request):
        """Feed one search outcome back into the cell's radius hint."""
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(400, "Invalid JSON")
        if not isinstance(body, dict):
            raise HTTPException(400, "Invalid JSON")

        lat, lon = _coords(body.get("lat"), body.get("lon"))
        try:
            result_count = int(body.get("resultCount") or 0)
        except (TypeError, ValueError):
            raise HTTPException(400, "resultCount must be an integer")
        outcome = SearchOutcome(
            grid_key=grid_key(lat, lon),
            result_count=result_count,
            capped=_flag(body, "capped"),
            errored=_flag(body, "error"),
        )
        return {"radius": hints.adjust_hint(lat, lon, outcome)}

    @router.get("/radius-hints")
    async def list_radius_hints():
        snap = hints.snapshot()
        return {"count": len(snap), "hints": snap}

    return router
