"""Serialized admission queue in front of a truncation-prone upstream.

Every request, whatever grid cell it targets, goes through one FIFO and one
minimum-interval throttle. On dequeue the cache is checked again: an earlier
item for the same key may have filled it while this one waited, in which case
the item resolves from cache without spending interval budget.
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Optional

from cache_proxy.cache_store import PersistentCache
from cache_proxy.errors import UpstreamError
from cache_proxy.logging_config import setup_logging
from cache_proxy.upstream import UpstreamResponse

logger = setup_logging(__name__, level="INFO")


@dataclass
class QueueItem:
    cache_key: Optional[str]
    build_request: Callable[[], UpstreamResponse]
    future: Future = field(default_factory=Future)
    enqueued_at: float = field(default_factory=time.monotonic)


class UpstreamGate:
    def __init__(
        self,
        cache: PersistentCache,
        ttl: float,
        min_interval: float,
        on_success: Optional[Callable[[bytes], None]] = None,
        name: str = "overpass",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.ttl = ttl
        self.min_interval = float(min_interval)
        self.on_success = on_success
        self.name = name
        self._clock = clock
        self._queue: "queue.Queue[Optional[QueueItem]]" = queue.Queue()
        self._stop = threading.Event()
        self._start_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._last_dispatch: Optional[float] = None
        self.metrics = {"dispatched": 0, "shortCircuited": 0, "failed": 0}

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def start(self):
        with self._start_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stop.clear()
            self._worker = threading.Thread(target=self._run, name=f"{self.name}-gate", daemon=True)
            self._worker.start()

    def submit(self, cache_key: Optional[str], build_request: Callable[[], UpstreamResponse]) -> Future:
        """Queue one upstream call; the returned future resolves to an UpstreamResponse or UpstreamError."""
        self.start()
        item = QueueItem(cache_key=cache_key, build_request=build_request)
        self._queue.put(item)
        logger.debug(f"[Gate:{self.name}] queued key={cache_key} depth={self.depth}")
        return item.future

    def close(self, timeout: float = 5.0):
        self._stop.set()
        self._queue.put(None)
        worker = self._worker
        if worker is not None:
            worker.join(timeout=timeout)
        # Anything still queued will never be dispatched
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None and item.future.set_running_or_notify_cancel():
                item.future.set_exception(UpstreamError(f"{self.name} gate closed"))

    def stats_payload(self) -> dict:
        return {
            "depth": self.depth,
            "minIntervalSeconds": self.min_interval,
            **self.metrics,
        }

    def _run(self):
        while not self._stop.is_set():
            item = self._queue.get()
            if item is None:
                break
            if not item.future.set_running_or_notify_cancel():
                continue
            self._process(item)

    def _fresh_entry(self, key: Optional[str]):
        if key is None:
            return None
        entry = self.cache.peek(key)
        if entry is None or entry.expired(self.ttl):
            return None
        return entry

    def _wait_for_slot(self):
        if self._last_dispatch is None:
            return
        wait = self._last_dispatch + self.min_interval - self._clock()
        if wait > 0:
            self._stop.wait(wait)

    def _process(self, item: QueueItem):
        entry = self._fresh_entry(item.cache_key)
        if entry is not None:
            self.metrics["shortCircuited"] += 1
            logger.info(f"[Gate:{self.name}] {item.cache_key} satisfied from cache while queued")
            item.future.set_result(UpstreamResponse(status=200, body=entry.payload, content_type=entry.content_type))
            return

        self._wait_for_slot()
        if self._stop.is_set():
            item.future.set_exception(UpstreamError(f"{self.name} gate closed"))
            return

        self._last_dispatch = self._clock()
        self.metrics["dispatched"] += 1
        queued_ms = (self._last_dispatch - item.enqueued_at) * 1000.0
        try:
            resp = item.build_request()
        except UpstreamError as e:
            self.metrics["failed"] += 1
            logger.error(f"[Gate:{self.name}] upstream error for {item.cache_key}: {e}")
            item.future.set_exception(e)
            return
        except Exception as e:
            self.metrics["failed"] += 1
            logger.exception(f"[Gate:{self.name}] request builder failed for {item.cache_key}")
            item.future.set_exception(UpstreamError(f"{type(e).__name__}: {e}"))
            return

        logger.info(
            f"[Gate:{self.name}] {item.cache_key} upstream={resp.elapsed_ms:.0f}ms "
            f"status={resp.status} queued={queued_ms:.0f}ms depth={self.depth}"
        )
        if not resp.ok:
            self.metrics["failed"] += 1
            item.future.set_exception(
                UpstreamError(f"{self.name} HTTP {resp.status}", status=resp.status, body=resp.body, content_type=resp.content_type)
            )
            return

        if item.cache_key is not None:
            self.cache.set(item.cache_key, resp.body, resp.content_type)
        if self.on_success is not None:
            try:
                self.on_success(resp.body)
            except Exception:
                logger.exception(f"[Gate:{self.name}] on_success hook failed for {item.cache_key}")
        item.future.set_result(resp)
