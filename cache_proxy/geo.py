"""Grid-cell keys and small-scale distance helpers."""

from __future__ import annotations

import math

import numpy as np

from cache_proxy.constants import GRID_DECIMALS, METERS_PER_DEG


def round_coord(value: float, decimals: int = GRID_DECIMALS) -> float:
    # + 0.0 folds -0.0 into 0.0 so both sides of the equator/meridian share one key
    return round(float(value), decimals) + 0.0


def grid_key(lat: float, lon: float) -> str:
    """``"LAT3:LON3"`` cell id (~111 m cells)."""
    return f"{round_coord(lat):.{GRID_DECIMALS}f}:{round_coord(lon):.{GRID_DECIMALS}f}"


def parse_grid_key(key: str) -> tuple[float, float]:
    lat_s, lon_s = key.split(":", 1)
    return float(lat_s), float(lon_s)


def planar_distances_m(lat: float, lon: float, lats, lons) -> np.ndarray:
    """Equirectangular distance in meters from (lat, lon) to each point.

    Longitude deltas are scaled by cos(lat) of the query point; good enough at
    the tens-of-km scale used for hint lookup.
    """
    lats = np.asarray(lats, dtype=float)
    lons = np.asarray(lons, dtype=float)
    d_lat = lats - float(lat)
    d_lon = (lons - float(lon)) * math.cos(float(lat) * math.pi / 180.0)
    return np.sqrt(d_lat * d_lat + d_lon * d_lon) * METERS_PER_DEG


def valid_coords(lat: float, lon: float) -> bool:
    """Finite and on the globe: lat in [-90, 90], lon in [-180, 180]."""
    return (
        math.isfinite(lat) and math.isfinite(lon)
        and -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
    )


def nearest_within(lat: float, lon: float, lats, lons, max_m: float):
    """Return (index, distance_m) of the nearest point within ``max_m``, else (None, None).

    Points with a non-finite distance (NaN or inf coordinates) never match.
    """
    if len(lats) == 0:
        return None, None
    dist = planar_distances_m(lat, lon, lats, lons)
    finite = np.isfinite(dist)
    if not finite.any():
        return None, None
    dist = np.where(finite, dist, np.inf)
    idx = int(np.argmin(dist))
    if dist[idx] > max_m:
        return None, None
    return idx, float(dist[idx])


def parse_bbox(bbox: str) -> tuple[float, float, float, float]:
    """Parse ``"s,w,n,e"``; raises ValueError on anything else."""
    parts = [p.strip() for p in str(bbox).split(",")]
    if len(parts) != 4:
        raise ValueError("bbox: south,west,north,east")
    s, w, n, e = map(float, parts)
    if s > n:
        raise ValueError("bbox: south must be <= north")
    return s, w, n, e


def in_bbox(lat: float, lon: float, s: float, w: float, n: float, e: float) -> bool:
    return s <= lat <= n and w <= lon <= e
