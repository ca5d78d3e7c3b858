"""Per-grid-cell learned search radius.

The hint for a cell only moves through ``adjust_hint``, fed one
``SearchOutcome`` per client search:

    capped            -> radius * 0.5   (truncation: halve)
    errored           -> radius * 0.7   (upstream trouble: shrink a bit)
    result_count < 5  -> radius * 1.3   (too sparse: grow)
    otherwise         -> unchanged, updatedAt refreshed

and is always clamped to [MIN_RADIUS_M, MAX_RADIUS_M].
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from cache_proxy.constants import (
    DEFAULT_RADIUS_M,
    FLUSH_DELAY_SECONDS,
    FUZZY_RADIUS_M_DEFAULT,
    MAX_RADIUS_M,
    MIN_RADIUS_M,
    MIN_USEFUL_POI,
    ONE_MILE_M,
    RADIUS_CAPPED_FACTOR,
    RADIUS_ERROR_FACTOR,
    RADIUS_GROW_FACTOR,
)
from cache_proxy.geo import grid_key, nearest_within, parse_grid_key, valid_coords
from cache_proxy.logging_config import setup_logging
from cache_proxy.persistence import DebouncedWriter, read_pairs, remove_file

logger = setup_logging(__name__, level="INFO")

HINTS_FILE_NAME = "radius-hints.json"


@dataclass(frozen=True)
class SearchOutcome:
    grid_key: str
    result_count: int
    capped: bool = False
    errored: bool = False


@dataclass(frozen=True)
class RadiusHint:
    radius_m: int
    updated_at: float

    def to_json(self) -> dict:
        return {"radius": self.radius_m, "updatedAt": int(self.updated_at * 1000)}

    @classmethod
    def from_json(cls, row: dict) -> "RadiusHint":
        return cls(radius_m=clamp_radius(int(row["radius"])), updated_at=float(row.get("updatedAt", 0)) / 1000.0)


def clamp_radius(radius: float) -> int:
    return int(max(MIN_RADIUS_M, min(MAX_RADIUS_M, round(radius))))


def next_radius(radius: int, outcome: SearchOutcome) -> int:
    if outcome.capped:
        radius = radius * RADIUS_CAPPED_FACTOR
    elif outcome.errored:
        radius = radius * RADIUS_ERROR_FACTOR
    elif outcome.result_count < MIN_USEFUL_POI:
        radius = radius * RADIUS_GROW_FACTOR
    return clamp_radius(radius)


class RadiusHintStore:
    def __init__(
        self,
        data_dir: str,
        fuzzy_radius_m: float = FUZZY_RADIUS_M_DEFAULT,
        flush_delay: float = FLUSH_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = os.path.join(data_dir, HINTS_FILE_NAME)
        self.fuzzy_radius_m = float(fuzzy_radius_m)
        self._clock = clock
        self._hints: Dict[str, RadiusHint] = {}
        self._lock = threading.Lock()
        self.fuzzy_hits = 0
        self._writer = DebouncedWriter(self.path, self._snapshot, flush_delay, "radius hints")

    def __len__(self) -> int:
        with self._lock:
            return len(self._hints)

    def load(self) -> int:
        loaded = {}
        for key, row in read_pairs(self.path):
            try:
                if not valid_coords(*parse_grid_key(key)):
                    raise ValueError("coordinates out of range")
                loaded[key] = RadiusHint.from_json(row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed radius hint {key!r}: {e}")
        with self._lock:
            self._hints.update(loaded)
            n = len(self._hints)
        logger.info(f"Loaded {n} radius hints from disk")
        return n

    def _nearest(self, lat: float, lon: float):
        """(key, hint, distance_m) of the exact or nearest in-range hint, else None."""
        key = grid_key(lat, lon)
        with self._lock:
            hint = self._hints.get(key)
            if hint is not None:
                return key, hint, 0.0
            items = list(self._hints.items())
        if not items:
            return None
        coords = [parse_grid_key(k) for k, _ in items]
        idx, dist_m = nearest_within(lat, lon, [c[0] for c in coords], [c[1] for c in coords], self.fuzzy_radius_m)
        if idx is None:
            return None
        nearest_key, nearest = items[idx]
        return nearest_key, nearest, dist_m

    def get_hint(self, lat: float, lon: float) -> int:
        if not valid_coords(lat, lon):
            return DEFAULT_RADIUS_M
        key = grid_key(lat, lon)
        found = self._nearest(lat, lon)
        if found is None:
            return DEFAULT_RADIUS_M
        nearest_key, nearest, dist_m = found
        if nearest_key != key:
            with self._lock:
                self.fuzzy_hits += 1
            logger.info(
                f"[Radius] Fuzzy hit for {key}: nearest hint {nearest_key} "
                f"{dist_m / ONE_MILE_M:.2f}mi away → {nearest.radius_m}m"
            )
        return nearest.radius_m

    def adjust_hint(self, lat: float, lon: float, outcome: SearchOutcome) -> int:
        if not valid_coords(lat, lon):
            raise ValueError(f"invalid coordinates: {lat}, {lon}")
        key = grid_key(lat, lon)
        found = self._nearest(lat, lon)
        radius = next_radius(found[1].radius_m if found else DEFAULT_RADIUS_M, outcome)

        if outcome.capped:
            logger.info(f"[Radius] {key} capped → halve to {radius}m")
        elif outcome.errored:
            logger.info(f"[Radius] {key} error → shrink to {radius}m")
        elif outcome.result_count < MIN_USEFUL_POI:
            logger.info(f"[Radius] {key} only {outcome.result_count} POIs → grow to {radius}m")
        else:
            logger.info(f"[Radius] {key} {outcome.result_count} POIs, confirmed at {radius}m")

        with self._lock:
            self._hints[key] = RadiusHint(radius_m=radius, updated_at=self._clock())
        self._writer.schedule()
        return radius

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {k: h.to_json() for k, h in self._hints.items()}

    def clear(self) -> int:
        with self._lock:
            count = len(self._hints)
            self._hints.clear()
        self._writer.cancel()
        remove_file(self.path)
        return count

    def _snapshot(self) -> list:
        with self._lock:
            items = list(self._hints.items())
        return [[k, h.to_json()] for k, h in items]

    def flush(self) -> bool:
        self._writer.cancel()
        return self._writer.write_now()

    def close(self):
        self._writer.close()
