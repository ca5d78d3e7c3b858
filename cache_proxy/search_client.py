"""Retry-to-fit POI search driven by the learned radius hints.

One ``search()`` call walks:

    hint -> query(radius) -> capped and above floor? halve, query again
                          -> terminal (ok, capped at floor, or upstream error)
                          -> report exactly one SearchOutcome

The hint and Overpass collaborators are duck-typed so the same loop runs
in-process (RadiusHintStore + GatedOverpass) or against a remote proxy
(ProxyClient).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from cache_proxy.constants import MIN_RADIUS_M, OVERPASS_RESULT_LIMIT
from cache_proxy.errors import SearchCancelled, UpstreamError
from cache_proxy.geo import grid_key
from cache_proxy.logging_config import setup_logging
from cache_proxy.overpass import Poi, build_overpass_query, parse_elements, parse_overpass_cache_key
from cache_proxy.radius_hints import SearchOutcome
from cache_proxy.upstream import HttpFetcher, fetch_overpass
from cache_proxy.upstream_gate import UpstreamGate

logger = setup_logging(__name__, level="INFO")


class HintSource(Protocol):
    def get_hint(self, lat: float, lon: float) -> int: ...

    def adjust_hint(self, lat: float, lon: float, outcome: SearchOutcome) -> int: ...


class OverpassSource(Protocol):
    def query(self, ql: str) -> bytes: ...


@dataclass
class SearchResult:
    pois: List[Poi]
    raw_count: int
    radius_m: int
    capped: bool
    grid_key: str
    attempts: List[int] = field(default_factory=list)
    hint_after: Optional[int] = None


class GatedOverpass:
    """Overpass source that goes through the shared UpstreamGate and cache."""

    def __init__(self, gate: UpstreamGate, fetcher: HttpFetcher, url: str):
        self.gate = gate
        self.fetcher = fetcher
        self.url = url

    def query(self, ql: str) -> bytes:
        key = parse_overpass_cache_key(ql)
        entry = self.gate.cache.get(key, self.gate.ttl) if key else None
        if entry is not None:
            return entry.payload
        future = self.gate.submit(key, lambda: fetch_overpass(self.fetcher, self.url, ql))
        return future.result().body


class SearchClient:
    def __init__(
        self,
        hints: HintSource,
        overpass: OverpassSource,
        cap_threshold: int = OVERPASS_RESULT_LIMIT,
        min_radius: int = MIN_RADIUS_M,
    ):
        self.hints = hints
        self.overpass = overpass
        self.cap_threshold = int(cap_threshold)
        self.min_radius = int(min_radius)

    def _check_cancel(self, cancel: Optional[threading.Event], key: str):
        if cancel is not None and cancel.is_set():
            logger.info(f"[Search] {key} cancelled")
            raise SearchCancelled(f"search at {key} cancelled")

    def search(
        self,
        lat: float,
        lon: float,
        categories: Optional[List[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> SearchResult:
        """Search around (lat, lon), shrinking the radius until the answer fits under the cap.

        Raises UpstreamError after reporting an ``errored`` outcome, or
        SearchCancelled (no outcome reported) when ``cancel`` is set.
        """
        key = grid_key(lat, lon)
        self._check_cancel(cancel, key)
        radius = int(self.hints.get_hint(lat, lon))
        attempts: List[int] = []
        seen_cap = False
        t0 = time.perf_counter()

        while True:
            self._check_cancel(cancel, key)
            attempts.append(radius)
            ql = build_overpass_query(lat, lon, radius, categories, limit=self.cap_threshold)
            try:
                body = self.overpass.query(ql)
                pois, raw_count = parse_elements(body)
            except (UpstreamError, ValueError) as e:
                logger.warning(f"[Search] {key} failed at {radius}m: {e}")
                self.hints.adjust_hint(lat, lon, SearchOutcome(grid_key=key, result_count=0, capped=seen_cap, errored=True))
                if isinstance(e, UpstreamError):
                    raise
                raise UpstreamError(f"Unreadable Overpass response: {e}") from e

            capped = raw_count >= self.cap_threshold
            seen_cap = seen_cap or capped
            if capped and radius > self.min_radius:
                smaller = max(self.min_radius, radius // 2)
                logger.info(f"[Search] {key} capped at {radius}m ({raw_count} elements) → retry at {smaller}m")
                radius = smaller
                continue
            break

        outcome = SearchOutcome(grid_key=key, result_count=len(pois), capped=seen_cap)
        hint_after = self.hints.adjust_hint(lat, lon, outcome)
        logger.info(
            f"[Search] {key} {len(pois)} POIs ({raw_count} raw) at {radius}m after "
            f"{len(attempts)} attempt(s) in {(time.perf_counter() - t0) * 1000:.0f}ms"
        )
        return SearchResult(
            pois=pois,
            raw_count=raw_count,
            radius_m=radius,
            capped=capped,
            grid_key=key,
            attempts=attempts,
            hint_after=hint_after,
        )
