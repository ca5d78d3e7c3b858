"""Stats/health payload assembly helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def build_cache_stats_payload(*, cache, hints, pois, gate, limiter, api_error_counters):
    hit_rate = cache.hit_rate()
    queue = gate.stats_payload()
    return {
        "entries": len(cache),
        "radiusHints": len(hints),
        "pois": len(pois),
        "hits": cache.stats["hits"],
        "misses": cache.stats["misses"],
        "expired": cache.stats["expired"],
        "stale": cache.stats["stale"],
        "hitRate": round(hit_rate, 3) if hit_rate is not None else None,
        "fuzzyHintHits": hints.fuzzy_hits,
        "overpassQueue": {
            "depth": queue["depth"],
            "dispatched": queue["dispatched"],
            "shortCircuited": queue["shortCircuited"],
            "failed": queue["failed"],
            "minIntervalSeconds": queue["minIntervalSeconds"],
        },
        "opensky": limiter.status(),
        "apiErrors": dict(api_error_counters),
    }


def build_poi_stats_payload(*, pois):
    return {
        "count": len(pois),
        "diskSizeMB": round(pois.disk_size() / (1024 * 1024), 2),
    }


def build_health_payload(*, state, started_at):
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "uptimeSeconds": round((now - started_at).total_seconds(), 1),
        "entries": len(state.cache),
        "radiusHints": len(state.hints),
        "overpassQueueDepth": state.gate.depth,
        "openskyConfigured": state.opensky.configured,
    }
