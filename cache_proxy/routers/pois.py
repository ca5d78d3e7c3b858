from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from cache_proxy.status_ops import build_poi_stats_payload


def build_pois_router(*, pois):
    router = APIRouter()

    @router.get("/pois/stats")
    async def poi_stats():
        return build_poi_stats_payload(pois=pois)

    @router.get("/pois/export")
    async def poi_export():
        rows = pois.export()
        return {"count": len(rows), "pois": rows}

    @router.get("/pois/bbox")
    async def poi_bbox(
        s: float = Query(..., ge=-90, le=90),
        w: float = Query(..., ge=-180, le=180),
        n: float = Query(..., ge=-90, le=90),
        e: float = Query(..., ge=-180, le=180),
    ):
        if s > n:
            raise HTTPException(400, "s must be <= n")
        elements = pois.in_bbox(s, w, n, e)
        return {"count": len(elements), "elements": elements}

    @router.get("/poi/{el_type}/{el_id}")
    async def poi_detail(el_type: str, el_id: str):
        entry = pois.get(el_type, el_id)
        if entry is None:
            raise HTTPException(404, f"POI {el_type}/{el_id} not cached")
        return entry

    return router
