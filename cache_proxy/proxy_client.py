"""HTTP client of the cache proxy, usable as SearchClient's hint and Overpass source."""

from __future__ import annotations

from typing import Optional

import requests

from cache_proxy.constants import DEFAULT_RADIUS_M
from cache_proxy.errors import QuotaExhausted, UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.radius_hints import SearchOutcome

logger = setup_logging(__name__, level="INFO")


class ProxyClient:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout=(10.0, 90.0)):
        self.base = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, self.base + path, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"proxy unreachable: {type(e).__name__}: {e}") from e

    def get_hint(self, lat: float, lon: float) -> int:
        try:
            r = self._request("GET", "/radius-hint", params={"lat": lat, "lon": lon})
        except UpstreamError as e:
            logger.warning(f"[ProxyClient] radius-hint lookup failed, using default: {e}")
            return DEFAULT_RADIUS_M
        if r.status_code != 200:
            return DEFAULT_RADIUS_M
        return int(r.json().get("radius", DEFAULT_RADIUS_M))

    def adjust_hint(self, lat: float, lon: float, outcome: SearchOutcome) -> Optional[int]:
        payload = {
            "lat": lat,
            "lon": lon,
            "resultCount": outcome.result_count,
            "error": outcome.errored,
            "capped": outcome.capped,
        }
        try:
            r = self._request("POST", "/radius-hint", json=payload)
        except UpstreamError as e:
            # Feedback is best effort; the next search just starts from the old hint
            logger.warning(f"[ProxyClient] radius-hint feedback lost: {e}")
            return None
        if r.status_code != 200:
            logger.warning(f"[ProxyClient] radius-hint feedback rejected: HTTP {r.status_code}")
            return None
        return int(r.json().get("radius"))

    def query(self, ql: str) -> bytes:
        r = self._request("POST", "/overpass", data={"data": ql})
        if not 200 <= r.status_code < 300:
            raise UpstreamError(
                f"overpass HTTP {r.status_code}", status=r.status_code, body=r.content,
                content_type=r.headers.get("Content-Type", ""),
            )
        return r.content

    def query_cache_only(self, ql: str) -> bytes:
        """Cached (or neighbour-merged) body; an empty element list when nothing is cached."""
        r = self._request("POST", "/overpass", data={"data": ql}, headers={"X-Cache-Only": "true"})
        if r.status_code == 204:
            return b'{"elements":[]}'
        if not 200 <= r.status_code < 300:
            raise UpstreamError(f"overpass HTTP {r.status_code}", status=r.status_code, body=r.content)
        return r.content

    def fetch_aircraft(self, bbox: Optional[str] = None, icao24: Optional[str] = None) -> dict:
        params = {"icao24": icao24} if icao24 else {"bbox": bbox}
        r = self._request("GET", "/aircraft", params=params)
        if r.status_code == 429:
            raise QuotaExhausted(float(r.headers.get("Retry-After", "60")))
        if r.status_code != 200:
            raise UpstreamError(f"aircraft HTTP {r.status_code}", status=r.status_code, body=r.content)
        return r.json()

    def close(self):
        self.session.close()
