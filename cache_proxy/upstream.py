"""Upstream HTTP fetchers (Overpass, OpenSky, plain feeds)."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from cache_proxy.errors import UpstreamError
from cache_proxy.logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")


@dataclass(frozen=True)
class UpstreamResponse:
    status: int
    body: bytes
    content_type: str = "application/json"
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _wrap(resp: requests.Response, t0: float) -> UpstreamResponse:
    return UpstreamResponse(
        status=resp.status_code,
        body=resp.content,
        content_type=resp.headers.get("Content-Type") or "application/json",
        elapsed_ms=(time.perf_counter() - t0) * 1000.0,
    )


def raise_for_upstream(resp: UpstreamResponse, name: str) -> UpstreamResponse:
    """Turn a non-2xx upstream answer into UpstreamError carrying status and body."""
    if not resp.ok:
        raise UpstreamError(f"{name} HTTP {resp.status}", status=resp.status, body=resp.body, content_type=resp.content_type)
    return resp


class HttpFetcher:
    """Thin wrapper over one requests.Session with connect/read timeouts."""

    def __init__(self, timeout=(15.0, 60.0), user_agent: str = "cache-proxy/1.0", session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)

    def get(self, url: str, params: Optional[Dict[str, str]] = None, headers: Optional[Dict[str, str]] = None) -> UpstreamResponse:
        t0 = time.perf_counter()
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"{type(e).__name__}: {e}") from e
        return _wrap(resp, t0)

    def post_form(self, url: str, data: Dict[str, str], headers: Optional[Dict[str, str]] = None) -> UpstreamResponse:
        t0 = time.perf_counter()
        try:
            resp = self.session.post(url, data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"{type(e).__name__}: {e}") from e
        return _wrap(resp, t0)

    def close(self):
        self.session.close()


def fetch_overpass(fetcher: HttpFetcher, url: str, query: str) -> UpstreamResponse:
    return fetcher.post_form(url, {"data": query})


class OpenSkyClient:
    """OpenSky states/all client with optional OAuth2 client-credentials token."""

    TOKEN_REFRESH_MARGIN_SECONDS = 300

    def __init__(self, fetcher: HttpFetcher, states_url: str, token_url: str, client_id: str = "", client_secret: str = ""):
        self.fetcher = fetcher
        self.states_url = states_url
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _access_token(self) -> Optional[str]:
        if not self.configured:
            return None
        with self._lock:
            if self._token and time.time() < self._token_expires_at - self.TOKEN_REFRESH_MARGIN_SECONDS:
                return self._token
        try:
            resp = self.fetcher.post_form(self.token_url, {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            })
        except UpstreamError as e:
            logger.error(f"[OpenSky] Token error: {e}")
            return None
        if not resp.ok:
            logger.error(f"[OpenSky] Token request failed: {resp.status}")
            return None
        try:
            data = json.loads(resp.body)
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 1800))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"[OpenSky] Token response unreadable: {e}")
            return None
        with self._lock:
            self._token = token
            self._token_expires_at = time.time() + expires_in
        logger.info(f"[OpenSky] Token refreshed, expires in {expires_in:.0f}s")
        return token

    def states_params(self, bbox: Optional[tuple] = None, icao24: Optional[str] = None) -> Dict[str, str]:
        if icao24:
            return {"icao24": icao24.lower()}
        s, w, n, e = bbox
        return {"lamin": str(s), "lomin": str(w), "lamax": str(n), "lomax": str(e)}

    def fetch_states(self, bbox: Optional[tuple] = None, icao24: Optional[str] = None) -> UpstreamResponse:
        token = self._access_token()
        headers = {"Authorization": f"Bearer {token}"} if token else None
        return self.fetcher.get(self.states_url, params=self.states_params(bbox, icao24), headers=headers)
