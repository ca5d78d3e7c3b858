#!/usr/bin/env python3
"""Cache proxy smoke checks against a running instance.

Only cache-side endpoints are exercised; no Overpass or OpenSky request is
triggered (X-Cache-Only lookups, hints, stats).

Usage:
  python3 scripts/qa_smoke.py [--base http://127.0.0.1:3000]
"""

from __future__ import annotations

import argparse
import sys

import requests

SMOKE_QL = '[out:json];node["amenity"](around:1500,0.0,-179.999);out center 500;'


def assert_ok(cond: bool, msg: str):
    if not cond:
        raise AssertionError(msg)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default="http://127.0.0.1:3000")
    args = ap.parse_args()
    base = args.base.rstrip("/")

    # 1) Core endpoints
    for ep in ("/health", "/cache/stats", "/radius-hints", "/pois/stats"):
        r = requests.get(base + ep, timeout=20)
        assert_ok(r.status_code == 200, f"{ep} returned {r.status_code}")
        assert_ok(r.headers.get("X-Request-Id"), f"{ep} missing X-Request-Id")

    st = requests.get(base + "/cache/stats", timeout=20).json()
    for k in ("entries", "radiusHints", "pois", "hits", "misses", "hitRate", "overpassQueue", "opensky"):
        assert_ok(k in st, f"/cache/stats missing {k}")
    for k in ("depth", "dispatched", "shortCircuited", "failed"):
        assert_ok(k in st["overpassQueue"], f"/cache/stats missing overpassQueue.{k}")
    for k in ("requestsLast24h", "remaining", "backoffLevel"):
        assert_ok(k in st["opensky"], f"/cache/stats missing opensky.{k}")

    # 2) Radius hint contract
    r = requests.get(base + "/radius-hint", timeout=20)
    assert_ok(r.status_code == 400, f"/radius-hint without lat/lon returned {r.status_code}")
    r = requests.get(base + "/radius-hint", params={"lat": 0.0, "lon": -179.999}, timeout=20)
    assert_ok(r.status_code == 200, f"/radius-hint returned {r.status_code}")
    radius = r.json().get("radius")
    assert_ok(isinstance(radius, int) and 100 <= radius <= 15000, f"radius hint out of bounds: {radius}")

    # 3) Cache-only Overpass lookup never reaches upstream
    r = requests.post(base + "/overpass", data={"data": SMOKE_QL}, headers={"X-Cache-Only": "true"}, timeout=20)
    assert_ok(r.status_code in (200, 204), f"/overpass cache-only returned {r.status_code}")
    assert_ok(r.headers.get("X-Cache") in ("HIT", "NEIGHBOR", "MISS"), f"/overpass missing X-Cache ({r.headers.get('X-Cache')})")

    # 4) Aircraft needs bbox or icao24
    r = requests.get(base + "/aircraft", timeout=20)
    assert_ok(r.status_code == 400, f"/aircraft without params returned {r.status_code}")

    print("PASS: cache proxy smoke checks")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except AssertionError as e:
        print(f"FAIL: {e}")
        sys.exit(1)
