from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from cache_proxy.errors import UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.overpass import merge_elements, parse_overpass_query
from cache_proxy.response_headers import build_cache_headers
from cache_proxy.upstream import fetch_overpass

logger = setup_logging(__name__, level="INFO")


def build_overpass_router(*, cache, gate, fetcher, overpass_url, ttl):
    router = APIRouter()

    def _neighbor_bodies(parsed):
        bodies = []
        for key in parsed.neighbor_keys():
            entry = cache.peek(key)
            if entry is not None and not entry.expired(ttl):
                bodies.append(entry.payload)
        return bodies

    @router.post("/overpass")
    async def overpass(request: Request):
        form = await request.form()
        ql = form.get("data")
        if not ql or not isinstance(ql, str):
            raise HTTPException(400, "Missing form field: data")

        parsed = parse_overpass_query(ql)
        key = parsed.key if parsed else None
        if key is None:
            logger.debug("[Overpass] no around: clause, passthrough without caching")
        cache_only = request.headers.get("X-Cache-Only", "").strip().lower() == "true"

        if key is not None:
            entry = cache.get(key, ttl)
            if entry is not None:
                logger.info(f"[Cache HIT] {key}")
                return Response(content=entry.payload, media_type=entry.content_type, headers=build_cache_headers(cache="HIT"))

        if cache_only:
            bodies = _neighbor_bodies(parsed) if parsed else []
            if bodies:
                elements = merge_elements(bodies)
                logger.info(f"[Cache NEIGHBOR] {key} merged {len(bodies)} cells → {len(elements)} elements")
                return Response(
                    content=json.dumps({"elements": elements}),
                    media_type="application/json",
                    headers=build_cache_headers(cache="NEIGHBOR", extra={"X-Cache-Cells": str(len(bodies))}),
                )
            return Response(status_code=204, headers=build_cache_headers(cache="MISS"))

        future = gate.submit(key, lambda: fetch_overpass(fetcher, overpass_url, ql))
        try:
            resp = await asyncio.wrap_future(future)
        except UpstreamError as e:
            if e.status is not None:
                return Response(
                    content=e.body,
                    status_code=e.status,
                    media_type=e.content_type or "application/json",
                    headers=build_cache_headers(cache="MISS"),
                )
            logger.error(f"[Overpass upstream error] {e.detail}")
            return JSONResponse(
                status_code=502,
                content={"error": "Upstream request failed", "detail": e.detail},
                headers=build_cache_headers(cache="MISS"),
            )

        logger.info(f"[Cache MISS] {key} status={resp.status}")
        return Response(content=resp.body, status_code=resp.status, media_type=resp.content_type, headers=build_cache_headers(cache="MISS"))

    return router
