#!/usr/bin/env python3
"""Cache proxy FastAPI app: adaptive Overpass caching and OpenSky quota governance."""

import atexit
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cache_proxy.logging_config import LOG_DIR, setup_logging
from cache_proxy.routers.admin import build_admin_router
from cache_proxy.routers.aircraft import build_aircraft_router
from cache_proxy.routers.core import build_core_router
from cache_proxy.routers.feeds import build_feeds_router
from cache_proxy.routers.overpass import build_overpass_router
from cache_proxy.routers.pois import build_pois_router
from cache_proxy.routers.radius import build_radius_router
from cache_proxy.services.aircraft import fetch_aircraft
from cache_proxy.services.app_state import ProxyState
from cache_proxy.settings import Settings, load_settings
from cache_proxy.status_ops import build_cache_stats_payload, build_health_payload

logger = setup_logging(__name__, level="INFO")

PID_FILE = os.path.join(LOG_DIR, "cache-proxy.pid")


def create_app(settings: Optional[Settings] = None, state: Optional[ProxyState] = None) -> FastAPI:
    if state is None:
        state = ProxyState.from_settings(settings or load_settings())
    settings = state.settings
    started_at = datetime.now(timezone.utc)

    app = FastAPI(title="Cache Proxy")
    app.state.proxy = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_error_counters = state.api_error_counters

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        rid = getattr(request.state, "request_id", None) or uuid.uuid4().hex[:12]
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "requestId": rid}, headers={"X-Request-Id": rid})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", None) or uuid.uuid4().hex[:12]
        logger.exception(f"Unhandled error rid={rid}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error", "requestId": rid}, headers={"X-Request-Id": rid})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log requests with method, path, status and response time."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        response.headers["X-Request-Id"] = request_id

        if 400 <= response.status_code < 500:
            api_error_counters["4xx"] += 1
        elif response.status_code >= 500:
            api_error_counters["5xx"] += 1

        # Health polling is noise unless it fails
        if request.url.path != "/health" or response.status_code >= 400:
            logger.info(
                f"{request.method} {request.url.path} - {response.status_code} - {duration_ms:.2f}ms - rid={request_id}"
            )
        return response

    @app.on_event("startup")
    async def startup_event():
        logger.info("Cache proxy starting")
        logger.info(f"Data directory: {settings.data_dir}")
        state.load()
        logger.info(
            f"Overpass gate: 1 request per {settings.overpass_min_interval:g}s; "
            f"OpenSky: {'OAuth2 configured' if state.opensky.configured else 'anonymous'} "
            f"({state.limiter.daily_quota} req/day, budget {state.limiter.budget})"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Cache proxy shutting down, flushing pending writes")
        state.close()

    async def api_cache_stats():
        return build_cache_stats_payload(
            cache=state.cache,
            hints=state.hints,
            pois=state.pois,
            gate=state.gate,
            limiter=state.limiter,
            api_error_counters=api_error_counters,
        )

    async def api_cache_clear():
        cleared = state.cache.clear()
        hints_cleared = state.hints.clear()
        pois_cleared = state.pois.clear()
        logger.info(f"Cache cleared: {cleared} entries, {hints_cleared} radius hints, {pois_cleared} POIs")
        return {"cleared": cleared, "hintsCleared": hints_cleared, "poisCleared": pois_cleared}

    app.include_router(build_core_router(state=state, started_at=started_at, build_health_payload=build_health_payload))
    app.include_router(build_radius_router(hints=state.hints))
    app.include_router(
        build_overpass_router(
            cache=state.cache,
            gate=state.gate,
            fetcher=state.fetcher,
            overpass_url=settings.overpass_url,
            ttl=settings.overpass_ttl,
        )
    )
    app.include_router(
        build_aircraft_router(
            cache=state.cache,
            limiter=state.limiter,
            opensky=state.opensky,
            ttl=settings.aircraft_ttl,
            fetch_aircraft=fetch_aircraft,
        )
    )
    app.include_router(build_feeds_router(cache=state.cache, fetcher=state.fetcher, settings=settings))
    app.include_router(build_pois_router(pois=state.pois))
    app.include_router(build_admin_router(api_cache_stats=api_cache_stats, api_cache_clear=api_cache_clear))
    return app


def _acquire_single_instance_or_exit(pid_file: str):
    """Simple PID-file guard: two proxies on one data dir would overwrite each other's snapshots."""
    os.makedirs(os.path.dirname(pid_file), exist_ok=True)

    if os.path.exists(pid_file):
        try:
            with open(pid_file, "r") as f:
                old_pid = int(f.read().strip())
            if old_pid > 0:
                os.kill(old_pid, 0)
                raise SystemExit(f"Cache proxy already running with pid {old_pid} (pid file: {pid_file})")
        except (ProcessLookupError, ValueError):
            # stale or malformed pid file
            pass

    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))

    def _cleanup_pid_file():
        try:
            with open(pid_file, "r") as pf:
                cur = pf.read().strip()
            if cur == str(os.getpid()):
                os.remove(pid_file)
        except OSError:
            pass

    atexit.register(_cleanup_pid_file)


def main():
    settings = load_settings()
    _acquire_single_instance_or_exit(PID_FILE)
    import uvicorn
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
