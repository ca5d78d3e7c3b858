from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional

from cache_proxy.cache_store import PersistentCache
from cache_proxy.constants import WEBCAMS_LIMIT
from cache_proxy.errors import UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.upstream import UpstreamResponse

logger = setup_logging(__name__, level="INFO")


@dataclass(frozen=True)
class Served:
    """What a route hands back: status, raw body, content type and the X-Cache verdict."""

    status: int
    body: bytes
    content_type: str
    cache: str


def cached_get(
    cache: PersistentCache,
    key: str,
    ttl: float,
    fetch: Callable[[], UpstreamResponse],
    route: str,
    transform: Optional[Callable[[bytes], bytes]] = None,
) -> Served:
    """Cache-then-upstream passthrough; only 2xx answers are stored.

    ``transform`` reshapes a 2xx body before it is cached, so hits serve the
    reshaped form. Transport failures propagate as UpstreamError (the router
    maps them to 502).
    """
    entry = cache.get(key, ttl)
    if entry is not None:
        logger.info(f"[Cache HIT] {route} key={key}")
        return Served(200, entry.payload, entry.content_type, "HIT")

    resp = fetch()
    logger.info(f"[Cache MISS] {route} upstream={resp.elapsed_ms:.0f}ms status={resp.status}")
    if not resp.ok:
        return Served(resp.status, resp.body, resp.content_type, "MISS")

    body, content_type = resp.body, resp.content_type
    if transform is not None:
        body, content_type = transform(body), "application/json"
    cache.set(key, body, content_type)
    return Served(resp.status, body, content_type, "MISS")


def metar_params(bbox: str) -> dict:
    return {"format": "json", "hours": "1", "taf": "false", "bbox": bbox}


def feed_key(name: str, suffix: Optional[str] = None) -> str:
    return f"{name}:{suffix}" if suffix else name


def webcams_params(s: str, w: str, n: str, e: str, categories: str) -> dict:
    # Windy wants the box as north,east,south,west
    return {
        "bbox": f"{n},{e},{s},{w}",
        "category": categories,
        "limit": str(WEBCAMS_LIMIT),
        "include": "images,location,categories",
    }


def _first(*values, default=None):
    for v in values:
        if v:
            return v
    return default


def _coalesce(*values):
    return next((v for v in values if v is not None), None)


def _webcam(wc: dict) -> dict:
    location = wc.get("location") or {}
    position = wc.get("position") or {}
    images = wc.get("images") or {}
    current = images.get("current") or {}
    daylight = images.get("daylight") or {}
    return {
        "id": _first(wc.get("webcamId"), wc.get("id")),
        "title": wc.get("title") or "",
        "lat": _coalesce(location.get("latitude"), position.get("latitude"), 0),
        "lon": _coalesce(location.get("longitude"), position.get("longitude"), 0),
        "categories": [c.get("id") if isinstance(c, dict) else c for c in wc.get("categories") or []],
        "previewUrl": _first(current.get("preview"), daylight.get("preview"), default=""),
        "thumbnailUrl": _first(current.get("thumbnail"), daylight.get("thumbnail"), default=""),
        "status": wc.get("status") or "active",
        "lastUpdated": wc.get("lastUpdatedOn") or None,
    }


def reshape_webcams(body: bytes) -> bytes:
    """Flatten a Windy v3 ``webcams`` response into a list of map-ready cameras."""
    try:
        raw = json.loads(body)
    except ValueError as e:
        raise UpstreamError(f"Invalid webcams JSON: {e}")
    webcams = raw.get("webcams") if isinstance(raw, dict) else None
    shaped = [_webcam(wc) for wc in webcams or [] if isinstance(wc, dict)]
    return json.dumps(shaped).encode("utf-8")
