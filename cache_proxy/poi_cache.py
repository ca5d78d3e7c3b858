"""Individual POI store, fed by every successful Overpass response."""

from __future__ import annotations

import json
import os
import threading
import time
from typing import Callable, Dict, List, Optional

from cache_proxy.constants import FLUSH_DELAY_SECONDS
from cache_proxy.geo import in_bbox
from cache_proxy.logging_config import setup_logging
from cache_proxy.overpass import element_coords
from cache_proxy.persistence import DebouncedWriter, read_pairs, remove_file

logger = setup_logging(__name__, level="INFO")

POI_FILE_NAME = "poi-cache.json"


def poi_key(el_type: str, el_id) -> str:
    return f"poi:{el_type}:{el_id}"


class PoiCache:
    """``poi:TYPE:ID`` -> {element, firstSeen, lastSeen}; last response wins for the element body."""

    def __init__(self, data_dir: str, flush_delay: float = FLUSH_DELAY_SECONDS, clock: Callable[[], float] = time.time):
        self.path = os.path.join(data_dir, POI_FILE_NAME)
        self._clock = clock
        self._pois: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._writer = DebouncedWriter(self.path, self._snapshot, flush_delay, "POIs")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pois)

    def load(self) -> int:
        loaded = {k: v for k, v in read_pairs(self.path) if isinstance(v, dict) and isinstance(v.get("element"), dict)}
        with self._lock:
            self._pois.update(loaded)
            n = len(self._pois)
        logger.info(f"Loaded {n} individual POIs from disk")
        return n

    def ingest(self, body: bytes) -> tuple[int, int]:
        """Merge the elements of one Overpass body; returns (added, updated)."""
        try:
            parsed = json.loads(body)
        except ValueError as e:
            logger.error(f"[POI Cache] Failed to parse response: {e}")
            return 0, 0
        elements = parsed.get("elements") if isinstance(parsed, dict) else None
        if not isinstance(elements, list):
            return 0, 0

        now_ms = int(self._clock() * 1000)
        added = updated = 0
        with self._lock:
            for el in elements:
                if not isinstance(el, dict) or not el.get("type") or not el.get("id"):
                    continue
                key = poi_key(el["type"], el["id"])
                existing = self._pois.get(key)
                if existing is not None:
                    existing["element"] = el
                    existing["lastSeen"] = now_ms
                    updated += 1
                else:
                    self._pois[key] = {"element": el, "firstSeen": now_ms, "lastSeen": now_ms}
                    added += 1
            total = len(self._pois)

        logger.info(f"[POI Cache] +{added} new, {updated} updated ({total} total)")
        if added or updated:
            self._writer.schedule()
        return added, updated

    def get(self, el_type: str, el_id: str) -> Optional[dict]:
        with self._lock:
            entry = self._pois.get(poi_key(el_type, el_id))
            return dict(entry) if entry is not None else None

    def in_bbox(self, south: float, west: float, north: float, east: float) -> List[dict]:
        with self._lock:
            entries = list(self._pois.values())
        out = []
        for entry in entries:
            el = entry["element"]
            lat, lon = element_coords(el)
            if lat is None or lon is None:
                continue
            if in_bbox(float(lat), float(lon), south, west, north, east):
                out.append(el)
        return out

    def export(self) -> List[dict]:
        with self._lock:
            return [{"key": k, **v} for k, v in self._pois.items()]

    def disk_size(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError:
            return 0

    def clear(self) -> int:
        with self._lock:
            count = len(self._pois)
            self._pois.clear()
        self._writer.cancel()
        remove_file(self.path)
        return count

    def _snapshot(self) -> list:
        with self._lock:
            return [[k, v] for k, v in self._pois.items()]

    def flush(self) -> bool:
        self._writer.cancel()
        return self._writer.write_now()

    def close(self):
        self._writer.close()
