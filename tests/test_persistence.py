"""Snapshot writer and grid helpers."""

from __future__ import annotations

import json
import os

import pytest

from cache_proxy.geo import in_bbox, nearest_within, parse_bbox, parse_grid_key, valid_coords
from cache_proxy.persistence import DebouncedWriter, read_pairs, write_json_atomic


def test_read_pairs_filters_bad_rows(tmp_path):
    path = str(tmp_path / "pairs.json")
    write_json_atomic(path, [["a", 1], ["b"], [2, 3], ["c", {"x": 1}]])
    assert read_pairs(path) == [["a", 1], ["c", {"x": 1}]]


def test_read_pairs_non_array(tmp_path):
    path = tmp_path / "pairs.json"
    path.write_text(json.dumps({"a": 1}))
    assert read_pairs(str(path)) == []
    assert read_pairs(str(tmp_path / "missing.json")) == []


def test_write_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    writer = DebouncedWriter(str(blocker / "out.json"), lambda: [["k", 1]], 60, "rows")
    assert writer.write_now() is False
    assert writer.writes == 0


def test_close_flushes_only_when_pending(tmp_path):
    path = str(tmp_path / "out.json")
    writer = DebouncedWriter(path, lambda: [["k", 1]], 60, "rows")
    writer.close()
    assert not os.path.exists(path)
    writer.schedule()
    writer.schedule()
    assert writer.pending
    writer.close()
    assert writer.writes == 1
    assert read_pairs(path) == [["k", 1]]


def test_parse_bbox():
    assert parse_bbox("42, -72, 43, -71") == (42.0, -72.0, 43.0, -71.0)
    with pytest.raises(ValueError):
        parse_bbox("1,2,3")
    with pytest.raises(ValueError):
        parse_bbox("43,-72,42,-71")


def test_nearest_within_empty_and_range():
    assert nearest_within(0.0, 0.0, [], [], 1000) == (None, None)
    idx, dist = nearest_within(0.0, 0.0, [0.0, 0.005], [0.01, 0.0], 1000)
    assert idx == 1
    assert dist == pytest.approx(556.6, rel=1e-3)


def test_nearest_within_ignores_non_finite_points():
    nan = float("nan")
    assert nearest_within(-33.9, 151.2, [nan], [nan], 20_000) == (None, None)
    idx, _ = nearest_within(0.0, 0.0, [nan, 0.005], [nan, 0.0], 1000)
    assert idx == 1
    assert nearest_within(0.0, 0.0, [float("inf"), 5.0], [0.0, 0.0], 1000) == (None, None)


def test_valid_coords():
    assert valid_coords(-90.0, 180.0)
    assert not valid_coords(float("nan"), 0.0)
    assert not valid_coords(0.0, float("-inf"))
    assert not valid_coords(90.1, 0.0)
    assert not valid_coords(0.0, -181.0)


def test_grid_helpers():
    assert parse_grid_key("42.360:-71.059") == (42.36, -71.059)
    assert in_bbox(42.5, -71.5, 42.0, -72.0, 43.0, -71.0)
    assert not in_bbox(44.0, -71.5, 42.0, -72.0, 43.0, -71.0)
