"""OpenSky states fetch behind the quota limiter.

Order of preference: fresh cache, live upstream (when the limiter allows),
stale cache of any age, and only then QuotaExhausted.
"""

from __future__ import annotations

from typing import Optional

from cache_proxy.cache_store import PersistentCache
from cache_proxy.errors import QuotaExhausted, UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.quota_limiter import QuotaLimiter
from cache_proxy.services.feeds import Served
from cache_proxy.upstream import OpenSkyClient

logger = setup_logging(__name__, level="INFO")


def aircraft_cache_key(bbox: Optional[tuple] = None, icao24: Optional[str] = None) -> str:
    if icao24:
        return f"aircraft:icao:{icao24.lower()}"
    return "aircraft:" + ",".join(str(v) for v in bbox)


def _stale(cache: PersistentCache, key: str) -> Optional[Served]:
    entry = cache.peek(key)
    if entry is None:
        return None
    cache.note_stale()
    logger.info(f"[Aircraft] serving stale {key} (age {entry.age():.0f}s)")
    return Served(200, entry.payload, entry.content_type, "STALE")


def fetch_aircraft(
    cache: PersistentCache,
    limiter: QuotaLimiter,
    opensky: OpenSkyClient,
    ttl: float,
    bbox: Optional[tuple] = None,
    icao24: Optional[str] = None,
) -> Served:
    key = aircraft_cache_key(bbox, icao24)
    entry = cache.get(key, ttl, evict=False)
    if entry is not None:
        return Served(200, entry.payload, entry.content_type, "HIT")

    if limiter.can_request():
        limiter.record_request()
        try:
            resp = opensky.fetch_states(bbox=bbox, icao24=icao24)
        except UpstreamError as e:
            logger.error(f"[Aircraft] upstream error for {key}: {e}")
            stale = _stale(cache, key)
            if stale is not None:
                return stale
            raise
        logger.info(f"[Aircraft] {key} upstream={resp.elapsed_ms:.0f}ms status={resp.status}")
        if resp.ok:
            limiter.record_success()
            cache.set(key, resp.body, resp.content_type)
            return Served(resp.status, resp.body, resp.content_type, "MISS")
        if resp.status == 429:
            limiter.record_rate_limited()
        stale = _stale(cache, key)
        if stale is not None:
            return stale
        if resp.status == 429:
            raise QuotaExhausted(limiter.retry_after(), reason="backoff")
        return Served(resp.status, resp.body, resp.content_type, "MISS")

    reason = limiter.throttle_reason() or "quota"
    stale = _stale(cache, key)
    if stale is not None:
        return stale
    retry_after = limiter.retry_after()
    logger.warning(f"[Aircraft] throttled ({reason}) with nothing cached for {key}; retry in {retry_after:.0f}s")
    raise QuotaExhausted(retry_after, reason=reason)
