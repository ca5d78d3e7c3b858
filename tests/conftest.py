"""Shared pytest fixtures for cache proxy unit, API and integration tests."""

from __future__ import annotations

import json
import os
import sys

import pytest
import requests

ROOT_DIR = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, ROOT_DIR)

from cache_proxy.settings import load_settings  # noqa: E402
from cache_proxy.upstream import UpstreamResponse  # noqa: E402

PROXY_BASE = os.environ.get("PROXY_BASE", "http://127.0.0.1:3000")
SCRIPTS_DIR = os.path.join(ROOT_DIR, "scripts")


def _reachable(url: str, timeout: float = 3.0) -> bool:
    try:
        r = requests.get(url + "/health", timeout=timeout)
        return r.status_code == 200
    except requests.RequestException:
        return False


@pytest.fixture(scope="session")
def proxy_base():
    """URL of a running cache proxy. Skip if not reachable."""
    if not _reachable(PROXY_BASE):
        pytest.skip(f"Cache proxy not reachable at {PROXY_BASE}; set PROXY_BASE or start the proxy.")
    return PROXY_BASE


def overpass_body(n: int, named: bool = True, start_id: int = 1, lat: float = 42.36, lon: float = -71.06) -> bytes:
    elements = []
    for i in range(n):
        el = {"type": "node", "id": start_id + i, "lat": lat + i * 1e-5, "lon": lon}
        if named:
            el["tags"] = {"name": f"Place {start_id + i}", "amenity": "cafe"}
        elements.append(el)
    return json.dumps({"elements": elements}).encode("utf-8")


def ok(body: bytes = b"{}", content_type: str = "application/json") -> UpstreamResponse:
    return UpstreamResponse(status=200, body=body, content_type=content_type, elapsed_ms=1.0)


class FakeFetcher:
    """Stand-in for HttpFetcher: answers from a per-URL script and records every call.

    A script entry is an UpstreamResponse, an exception instance (raised), or a
    callable taking the request kwargs.
    """

    def __init__(self):
        self.scripts = {}
        self.calls = []
        self.closed = False

    def script(self, url: str, *responses):
        self.scripts.setdefault(url, []).extend(responses)

    def _answer(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.scripts.get(url) or []
        if not queue:
            raise AssertionError(f"unexpected upstream call: {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(**kwargs)
        return item

    def get(self, url, params=None, headers=None):
        return self._answer("GET", url, params=params, headers=headers)

    def post_form(self, url, data, headers=None):
        return self._answer("POST", url, data=data, headers=headers)

    def calls_to(self, url):
        return [c for c in self.calls if c[1] == url]

    def close(self):
        self.closed = True


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def settings(data_dir):
    return load_settings(
        config_path="",
        env={},
        data_dir=data_dir,
        overpass_min_interval=0.0,
        flush_delay=0.05,
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()
