"""Overpass cache-key derivation and element counting."""

from __future__ import annotations

import json

from cache_proxy.overpass import (
    build_overpass_query,
    merge_elements,
    parse_elements,
    parse_overpass_cache_key,
    parse_overpass_query,
)


def test_radius_is_part_of_cache_key():
    # Regression: a shrink-and-retry at the same center must not replay the wider answer
    wide = build_overpass_query(42.36, -71.059, 3000)
    narrow = build_overpass_query(42.36, -71.059, 1500)
    assert parse_overpass_cache_key(wide) != parse_overpass_cache_key(narrow)
    assert parse_overpass_cache_key(narrow).startswith("overpass:42.360:-71.059:r1500:")


def test_key_uses_sorted_unique_tags():
    q1 = '[out:json];(node["shop"](around:500,1.0,2.0);node["amenity"="cafe"](around:500,1.0,2.0);node["shop"](around:500,1.0,2.0););out;'
    q2 = '[out:json];(node["amenity"="cafe"](around:500,1.0,2.0);node["shop"](around:500,1.0,2.0););out;'
    assert parse_overpass_cache_key(q1) == parse_overpass_cache_key(q2) == "overpass:1.000:2.000:r500:amenity=cafe,shop"


def test_coordinates_rounded_to_grid():
    a = parse_overpass_cache_key('node["amenity"](around:800,42.36049,-71.05911);')
    b = parse_overpass_cache_key('node["amenity"](around:800,42.3601,-71.0589);')
    assert a == b


def test_query_without_around_has_no_key():
    assert parse_overpass_query('[out:json];node["amenity"](50.0,7.0,51.0,8.0);out;') is None
    assert parse_overpass_cache_key("") is None


def test_neighbor_keys_cover_3x3_block():
    parsed = parse_overpass_query(build_overpass_query(42.36, -71.059, 1500, ["amenity"]))
    keys = parsed.neighbor_keys()
    assert len(keys) == 9
    assert parsed.key in keys
    assert "overpass:42.361:-71.060:r1500:amenity" in keys


def test_built_query_carries_limit_and_tags():
    ql = build_overpass_query(42.36, -71.059, 1500, ["amenity=cafe", "shop"], limit=500)
    assert 'node["amenity"="cafe"](around:1500,42.36,-71.059);' in ql
    assert 'way["shop"](around:1500,42.36,-71.059);' in ql
    assert ql.endswith("out center 500;")


def test_raw_count_includes_unnamed_elements():
    body = json.dumps({"elements": [
        {"type": "node", "id": 1, "lat": 1.0, "lon": 2.0, "tags": {"name": "Cafe", "amenity": "cafe"}},
        {"type": "node", "id": 2, "lat": 1.0, "lon": 2.0, "tags": {"amenity": "bench"}},
        {"type": "way", "id": 3, "center": {"lat": 1.1, "lon": 2.1}, "tags": {"name": "Park", "leisure": "park"}},
    ]})
    pois, raw = parse_elements(body)
    assert raw == 3
    assert [(p.name, p.category) for p in pois] == [("Cafe", "cafe"), ("Park", "park")]
    assert pois[1].lat == 1.1


def test_merge_dedups_by_type_and_id():
    a = json.dumps({"elements": [{"type": "node", "id": 1}, {"type": "way", "id": 1}]}).encode()
    b = json.dumps({"elements": [{"type": "node", "id": 1, "tags": {"name": "x"}}]}).encode()
    merged = merge_elements([a, b, b"not json"])
    assert len(merged) == 2
