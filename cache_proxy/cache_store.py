"""Persistent upstream response cache (TTL + lazy eviction + debounced snapshots)."""

from __future__ import annotations

import base64
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from cache_proxy.constants import FLUSH_DELAY_SECONDS
from cache_proxy.logging_config import setup_logging
from cache_proxy.persistence import DebouncedWriter, read_pairs, remove_file

logger = setup_logging(__name__, level="INFO")

CACHE_FILE_NAME = "cache-data.json"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: bytes
    content_type: str
    stored_at: float

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.stored_at

    def expired(self, ttl: float, now: Optional[float] = None) -> bool:
        return self.age(now) > ttl

    def to_json(self) -> dict:
        row = {"contentType": self.content_type, "timestamp": int(self.stored_at * 1000)}
        try:
            row["data"] = self.payload.decode("utf-8")
        except UnicodeDecodeError:
            row["dataB64"] = base64.b64encode(self.payload).decode("ascii")
        return row

    @classmethod
    def from_json(cls, key: str, row: dict) -> "CacheEntry":
        if "dataB64" in row:
            payload = base64.b64decode(row["dataB64"])
        else:
            payload = str(row["data"]).encode("utf-8")
        content_type = row.get("contentType") or (row.get("headers") or {}).get("content-type") or "application/json"
        return cls(key=key, payload=payload, content_type=content_type, stored_at=float(row["timestamp"]) / 1000.0)


class PersistentCache:
    """key -> CacheEntry map owned by one process.

    All access goes through one lock: the upstream gate worker and debounce
    timers run on their own threads next to the request loop.
    """

    def __init__(self, data_dir: str, flush_delay: float = FLUSH_DELAY_SECONDS, clock: Callable[[], float] = time.time):
        self.path = os.path.join(data_dir, CACHE_FILE_NAME)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = {"hits": 0, "misses": 0, "expired": 0, "stale": 0}
        self._writer = DebouncedWriter(self.path, self._snapshot, flush_delay, "cache entries")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def load(self) -> int:
        loaded = {}
        for key, row in read_pairs(self.path):
            try:
                loaded[key] = CacheEntry.from_json(key, row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed cache row {key!r}: {e}")
        with self._lock:
            self._entries.update(loaded)
            n = len(self._entries)
        logger.info(f"Loaded {n} cache entries from disk")
        return n

    def get(self, key: str, ttl: float, evict: bool = True) -> Optional[CacheEntry]:
        """Return a fresh entry or None.

        Entries older than ``ttl`` count as a miss; with ``evict`` they are also
        dropped. ``evict=False`` keeps them around for ``peek`` stale fallback.
        """
        evicted = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats["misses"] += 1
                return None
            if entry.expired(ttl, self._clock()):
                self.stats["expired"] += 1
                self.stats["misses"] += 1
                if evict:
                    del self._entries[key]
                    evicted = True
                entry = None
            else:
                self.stats["hits"] += 1
        if evicted:
            self._writer.schedule()
        return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Entry regardless of age; no eviction, no hit/miss accounting."""
        with self._lock:
            return self._entries.get(key)

    def note_stale(self):
        with self._lock:
            self.stats["stale"] += 1

    def set(self, key: str, payload: bytes, content_type: str = "application/json") -> CacheEntry:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        entry = CacheEntry(key=key, payload=bytes(payload), content_type=content_type or "application/json", stored_at=self._clock())
        with self._lock:
            self._entries[key] = entry
        self._writer.schedule()
        return entry

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            for k in self.stats:
                self.stats[k] = 0
        self._writer.cancel()
        remove_file(self.path)
        return count

    def hit_rate(self) -> Optional[float]:
        with self._lock:
            total = self.stats["hits"] + self.stats["misses"]
            return (self.stats["hits"] / total) if total else None

    def _snapshot(self) -> list:
        with self._lock:
            items = list(self._entries.items())
        return [[k, e.to_json()] for k, e in items]

    def flush(self) -> bool:
        self._writer.cancel()
        return self._writer.write_now()

    def close(self):
        self._writer.close()
