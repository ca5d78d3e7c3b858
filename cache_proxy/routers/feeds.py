from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from cache_proxy.constants import (
    EARTHQUAKES_TTL_SECONDS,
    METAR_TTL_SECONDS,
    NWS_ALERTS_TTL_SECONDS,
    WEBCAMS_TTL_SECONDS,
)
from cache_proxy.errors import UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.response_headers import build_cache_headers
from cache_proxy.services.feeds import cached_get, feed_key, metar_params, reshape_webcams, webcams_params

logger = setup_logging(__name__, level="INFO")


def build_feeds_router(*, cache, fetcher, settings):
    router = APIRouter()

    def _serve(route, key, ttl, fetch, transform=None, upstream_error=None):
        try:
            served = cached_get(cache, key, ttl, fetch, route, transform=transform)
        except UpstreamError as e:
            logger.error(f"[{route} upstream error] {e.detail}")
            return JSONResponse(status_code=502, content={"error": "Upstream request failed", "detail": e.detail})
        if upstream_error is not None and not 200 <= served.status < 300:
            logger.error(f"[{route}] Upstream HTTP {served.status}: {served.body[:300]!r}")
            return JSONResponse(status_code=served.status, content={"error": upstream_error, "status": served.status})
        return Response(
            content=served.body,
            status_code=served.status,
            media_type=served.content_type,
            headers=build_cache_headers(cache=served.cache),
        )

    @router.get("/earthquakes")
    def earthquakes():
        return _serve("/earthquakes", feed_key("earthquakes"), EARTHQUAKES_TTL_SECONDS, lambda: fetcher.get(settings.earthquakes_url))

    @router.get("/nws-alerts")
    def nws_alerts():
        return _serve(
            "/nws-alerts",
            feed_key("nws-alerts"),
            NWS_ALERTS_TTL_SECONDS,
            lambda: fetcher.get(settings.nws_alerts_url, headers={"User-Agent": settings.user_agent}),
        )

    @router.get("/metar")
    def metar(bbox: Optional[str] = Query(None)):
        if not bbox:
            raise HTTPException(400, "Must specify bbox (lat0,lon0,lat1,lon1)")
        return _serve(
            "/metar",
            feed_key("metar", bbox),
            METAR_TTL_SECONDS,
            lambda: fetcher.get(settings.metar_url, params=metar_params(bbox)),
        )

    @router.get("/webcams")
    def webcams(
        s: Optional[str] = Query(None),
        w: Optional[str] = Query(None),
        n: Optional[str] = Query(None),
        e: Optional[str] = Query(None),
        categories: Optional[str] = Query(None),
    ):
        if not (s and w and n and e):
            raise HTTPException(400, "Must specify s, w, n, e bounds")
        categories = categories or "traffic"
        return _serve(
            "/webcams",
            feed_key("webcams", f"{s},{w},{n},{e}:{categories}"),
            WEBCAMS_TTL_SECONDS,
            lambda: fetcher.get(
                settings.webcams_url,
                params=webcams_params(s, w, n, e, categories),
                headers={"x-windy-api-key": settings.webcams_api_key},
            ),
            transform=reshape_webcams,
            upstream_error="Webcams upstream error",
        )

    return router
