"""Overpass QL helpers: cache-key derivation, query building, result counting."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from cache_proxy.constants import DEFAULT_POI_TAGS, GRID_STEP_DEG, OVERPASS_RESULT_LIMIT
from cache_proxy.geo import round_coord

AROUND_RE = re.compile(r"around:\s*(\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)")
TAG_RE = re.compile(r'\["([^"]+)"(?:="([^"]+)")?\]')

CATEGORY_TAGS = ("amenity", "shop", "tourism", "leisure", "historic", "office")


@dataclass(frozen=True)
class OverpassKey:
    lat: float
    lon: float
    radius_m: int
    tags: Tuple[str, ...]

    @property
    def key(self) -> str:
        return compose_cache_key(self.lat, self.lon, self.radius_m, self.tags)

    def neighbor_keys(self) -> List[str]:
        """Keys of the 3x3 block of grid cells around this one (same radius and tags)."""
        keys = []
        for dlat in (-1, 0, 1):
            for dlon in (-1, 0, 1):
                keys.append(compose_cache_key(self.lat + dlat * GRID_STEP_DEG, self.lon + dlon * GRID_STEP_DEG, self.radius_m, self.tags))
        return keys


def compose_cache_key(lat: float, lon: float, radius_m: int, tags: Iterable[str]) -> str:
    # The radius is part of the key: a shrink-and-retry must not replay the pre-shrink response.
    return f"overpass:{round_coord(lat):.3f}:{round_coord(lon):.3f}:r{int(radius_m)}:{','.join(tags)}"


def extract_tags(query: str) -> Tuple[str, ...]:
    tags = {f"{k}={v}" if v else k for k, v in TAG_RE.findall(query)}
    return tuple(sorted(tags))


def parse_overpass_query(query: str) -> Optional[OverpassKey]:
    """Parse the first ``around:R,LAT,LON`` clause plus all tag filters; None if absent."""
    m = AROUND_RE.search(query or "")
    if not m:
        return None
    return OverpassKey(
        lat=round_coord(float(m.group(2))),
        lon=round_coord(float(m.group(3))),
        radius_m=int(float(m.group(1))),
        tags=extract_tags(query),
    )


def parse_overpass_cache_key(query: str) -> Optional[str]:
    parsed = parse_overpass_query(query)
    return parsed.key if parsed else None


def _tag_filter(tag: str) -> str:
    if "=" in tag:
        k, v = tag.split("=", 1)
        return f'["{k}"="{v}"]'
    return f'["{tag}"]'


def build_overpass_query(lat: float, lon: float, radius_m: int, categories: Optional[List[str]] = None, limit: int = OVERPASS_RESULT_LIMIT) -> str:
    tags = list(categories) if categories else list(DEFAULT_POI_TAGS)
    lines = ["[out:json][timeout:25];", "("]
    for tag in tags:
        flt = _tag_filter(tag)
        lines.append(f"  node{flt}(around:{int(radius_m)},{lat},{lon});")
        lines.append(f"  way{flt}(around:{int(radius_m)},{lat},{lon});")
    lines.append(");")
    lines.append(f"out center {int(limit)};")
    return "\n".join(lines)


@dataclass(frozen=True)
class Poi:
    id: str
    type: str
    name: str
    lat: float
    lon: float
    category: str


def element_coords(el: dict) -> Tuple[Optional[float], Optional[float]]:
    if "lat" in el and "lon" in el:
        return el["lat"], el["lon"]
    center = el.get("center") or {}
    return center.get("lat"), center.get("lon")


def parse_elements(body) -> Tuple[List[Poi], int]:
    """Return (named POIs, raw element count).

    The raw count is what truncation detection must use: filtering first
    under-counts cells dense with nameless elements.
    """
    if isinstance(body, (bytes, str)):
        body = json.loads(body)
    elements = (body.get("elements") or []) if isinstance(body, dict) else []
    pois = []
    for el in elements:
        if not isinstance(el, dict):
            continue
        tags = el.get("tags") or {}
        name = tags.get("name")
        lat, lon = element_coords(el)
        if not name or lat is None or lon is None:
            continue
        category = next((tags[t] for t in CATEGORY_TAGS if t in tags), "place")
        pois.append(Poi(id=str(el.get("id")), type=str(el.get("type", "node")), name=name, lat=float(lat), lon=float(lon), category=category))
    return pois, len(elements)


def merge_elements(bodies: Iterable[bytes]) -> List[dict]:
    """Union of elements across Overpass bodies, deduplicated by ``type/id``."""
    merged = {}
    for body in bodies:
        try:
            data = json.loads(body)
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        for el in data.get("elements") or []:
            if isinstance(el, dict):
                merged[f"{el.get('type')}/{el.get('id')}"] = el
    return list(merged.values())
