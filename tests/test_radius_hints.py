"""Radius hint rules, fuzzy lookup range and persistence."""

from __future__ import annotations

import json
import os

import pytest

from cache_proxy.constants import DEFAULT_RADIUS_M, MAX_RADIUS_M, METERS_PER_DEG, MIN_RADIUS_M, ONE_MILE_M
from cache_proxy.geo import grid_key
from cache_proxy.radius_hints import HINTS_FILE_NAME, RadiusHintStore, SearchOutcome


def outcome(count=50, capped=False, errored=False, key="0:0"):
    return SearchOutcome(grid_key=key, result_count=count, capped=capped, errored=errored)


@pytest.fixture
def store(data_dir):
    s = RadiusHintStore(data_dir, flush_delay=60)
    yield s
    s.close()


def test_grid_key_stability():
    assert grid_key(42.36049, -71.05949) == grid_key(42.3604, -71.0591) == "42.360:-71.059"
    assert grid_key(-0.0001, 0.0002) == "0.000:0.000"


def test_default_when_empty(store):
    assert store.get_hint(42.36, -71.06) == DEFAULT_RADIUS_M


def test_capped_halves_from_default(store):
    assert store.adjust_hint(42.36, -71.059, outcome(capped=True)) == 1500
    assert store.get_hint(42.36, -71.059) == 1500


def test_capped_strictly_decreases_until_floor(store):
    radii = [store.get_hint(42.36, -71.059)]
    for _ in range(12):
        radii.append(store.adjust_hint(42.36, -71.059, outcome(capped=True)))
    for prev, cur in zip(radii, radii[1:]):
        assert cur < prev or cur == MIN_RADIUS_M
    assert radii[-1] == MIN_RADIUS_M


def test_error_shrinks_and_sparse_grows(store):
    assert store.adjust_hint(10.0, 10.0, outcome(errored=True)) == 2100
    assert store.adjust_hint(10.0, 10.0, outcome(count=2)) == 2730


def test_capped_wins_over_error(store):
    assert store.adjust_hint(10.0, 10.0, outcome(capped=True, errored=True)) == 1500


def test_confirm_keeps_radius_and_refreshes(data_dir):
    times = iter([100.0, 200.0])
    store = RadiusHintStore(data_dir, flush_delay=60, clock=lambda: next(times))
    store.adjust_hint(10.0, 10.0, outcome(count=2))
    assert store.adjust_hint(10.0, 10.0, outcome(count=100)) == 3900
    assert store.snapshot()["10.000:10.000"] == {"radius": 3900, "updatedAt": 200000}


def test_grow_clamped_at_max(store):
    for _ in range(20):
        radius = store.adjust_hint(10.0, 10.0, outcome(count=0))
    assert radius == MAX_RADIUS_M


@pytest.mark.parametrize("km", [2, 5, 13])
def test_fuzzy_hit_within_range(store, km):
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    assert store.get_hint(42.36 + km * 1000 / METERS_PER_DEG, -71.059) == 1500


@pytest.mark.parametrize("km", [2, 5, 13])
def test_one_mile_range_falls_back_to_default(data_dir, km):
    mile = RadiusHintStore(data_dir, fuzzy_radius_m=ONE_MILE_M, flush_delay=60)
    mile.adjust_hint(42.36, -71.059, outcome(capped=True))
    assert mile.get_hint(42.36 + km * 1000 / METERS_PER_DEG, -71.059) == DEFAULT_RADIUS_M
    assert mile.fuzzy_hits == 0


def test_wider_range_raises_cross_cell_hits(tmp_path):
    lats = [42.36 + km * 1000 / METERS_PER_DEG for km in (0.5, 2, 5, 13, 40)]
    hits = {}
    for name, fuzzy in (("mile", ONE_MILE_M), ("20km", 20_000)):
        s = RadiusHintStore(str(tmp_path / name), fuzzy_radius_m=fuzzy, flush_delay=60)
        s.adjust_hint(42.36, -71.059, outcome(capped=True))
        for lat in lats:
            s.get_hint(lat, -71.059)
        hits[name] = s.fuzzy_hits
    assert hits == {"mile": 1, "20km": 4}


def test_fuzzy_miss_beyond_range(store):
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    assert store.get_hint(42.36 + 60_000 / METERS_PER_DEG, -71.059) == DEFAULT_RADIUS_M


def test_fuzzy_longitude_scaled_by_latitude(data_dir):
    # At 60N one degree of longitude is ~55.7 km: inside a 60 km range, outside a 50 km one
    wide = RadiusHintStore(data_dir, fuzzy_radius_m=60_000, flush_delay=60)
    wide.adjust_hint(60.0, 10.0, outcome(capped=True))
    assert wide.get_hint(60.0, 11.0) == 1500
    narrow = RadiusHintStore(data_dir, fuzzy_radius_m=50_000, flush_delay=60)
    narrow.adjust_hint(60.0, 10.0, outcome(capped=True))
    assert narrow.get_hint(60.0, 11.0) == DEFAULT_RADIUS_M


def test_fuzzy_picks_nearest(data_dir):
    store = RadiusHintStore(data_dir, fuzzy_radius_m=5000, flush_delay=60)
    store.adjust_hint(42.36, -71.059, outcome(capped=True))  # 1500
    store.adjust_hint(42.46, -71.059, outcome(errored=True))  # 2100
    assert store.get_hint(42.44, -71.059) == 2100
    assert store.fuzzy_hits == 1


def test_fuzzy_hit_seeds_adjust_base(store):
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    assert store.adjust_hint(42.37, -71.059, outcome(capped=True)) == 750


def test_restart_round_trip(data_dir):
    store = RadiusHintStore(data_dir, flush_delay=60)
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    store.adjust_hint(51.5, -0.12, outcome(count=1))
    store.close()

    reloaded = RadiusHintStore(data_dir, flush_delay=60)
    assert reloaded.load() == 2
    assert reloaded.get_hint(42.36, -71.059) == 1500
    assert reloaded.get_hint(51.5, -0.12) == 3900


def test_clear(store):
    store.adjust_hint(1.0, 1.0, outcome())
    assert store.clear() == 1
    assert store.get_hint(1.0, 1.0) == DEFAULT_RADIUS_M


def test_adjust_base_lookup_does_not_count_fuzzy_hits(store):
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    store.adjust_hint(42.37, -71.059, outcome(capped=True))
    assert store.fuzzy_hits == 0
    store.get_hint(42.38, -71.059)
    assert store.fuzzy_hits == 1


def test_exact_hit_is_not_fuzzy(store):
    store.adjust_hint(42.36, -71.059, outcome(capped=True))
    store.get_hint(42.36, -71.059)
    assert store.fuzzy_hits == 0


@pytest.mark.parametrize("lat,lon", [(float("nan"), 0.0), (0.0, float("inf")), (91.0, 0.0), (0.0, -180.5)])
def test_invalid_coordinates_rejected(store, lat, lon):
    with pytest.raises(ValueError):
        store.adjust_hint(lat, lon, outcome(capped=True))
    assert len(store) == 0
    assert store.get_hint(lat, lon) == DEFAULT_RADIUS_M


def test_load_skips_non_finite_keys(data_dir):
    rows = [
        ["nan:nan", {"radius": 1500, "updatedAt": 0}],
        ["inf:10.000", {"radius": 1500, "updatedAt": 0}],
        ["95.000:10.000", {"radius": 1500, "updatedAt": 0}],
        ["42.360:-71.059", {"radius": 750, "updatedAt": 0}],
    ]
    with open(os.path.join(data_dir, HINTS_FILE_NAME), "w") as f:
        json.dump(rows, f)
    store = RadiusHintStore(data_dir, flush_delay=60)
    assert store.load() == 1
    assert store.get_hint(-33.9, 151.2) == DEFAULT_RADIUS_M
    assert store.get_hint(42.36, -71.059) == 750
