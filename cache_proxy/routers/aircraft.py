from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from cache_proxy.errors import QuotaExhausted, UpstreamError
from cache_proxy.geo import parse_bbox
from cache_proxy.response_headers import build_cache_headers, build_retry_headers


def build_aircraft_router(*, cache, limiter, opensky, ttl, fetch_aircraft):
    router = APIRouter()

    @router.get("/aircraft")
    def aircraft(bbox: Optional[str] = Query(None), icao24: Optional[str] = Query(None)):
        # Sync handler: runs in the threadpool, the upstream call blocks
        if not bbox and not icao24:
            raise HTTPException(400, "Must specify bbox (s,w,n,e) or icao24")
        parsed = None
        if not icao24:
            try:
                parsed = parse_bbox(bbox)
            except ValueError as e:
                raise HTTPException(400, str(e))

        try:
            served = fetch_aircraft(cache, limiter, opensky, ttl, bbox=parsed, icao24=icao24)
        except QuotaExhausted as e:
            return JSONResponse(
                status_code=429,
                content={"error": "OpenSky quota exhausted", "reason": e.reason, "retryAfter": round(e.retry_after, 1)},
                headers=build_retry_headers(retry_after=e.retry_after),
            )
        except UpstreamError as e:
            return JSONResponse(status_code=502, content={"error": "Upstream request failed", "detail": e.detail})

        return Response(
            content=served.body,
            status_code=served.status,
            media_type=served.content_type,
            headers=build_cache_headers(cache=served.cache),
        )

    return router
