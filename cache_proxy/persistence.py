"""Best-effort JSON snapshots with debounced (coalesced) writes."""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Callable, List, Optional

from cache_proxy.logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")


def read_pairs(path: str) -> List[list]:
    """Read a flat JSON array of ``[key, value]`` pairs.

    Missing file, unreadable file or malformed JSON all yield ``[]``; rows that
    are not two-element lists are dropped.
    """
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load {os.path.basename(path)} from disk: {e}")
        return []
    if not isinstance(data, list):
        logger.error(f"Ignoring {os.path.basename(path)}: expected a JSON array")
        return []
    return [row for row in data if isinstance(row, list) and len(row) == 2 and isinstance(row[0], str)]


def write_json_atomic(path: str, data: Any):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, separators=(",", ":"))
    os.replace(tmp, path)


def remove_file(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not delete {path}: {e}")
        return False


class DebouncedWriter:
    """Coalesce bursts of mutations into one snapshot write.

    The first ``schedule()`` after a flush arms a timer; further calls while it
    is armed are absorbed. When the timer fires, ``snapshot()`` is taken and
    written to ``path``. Write errors are logged and swallowed.
    """

    def __init__(self, path: str, snapshot: Callable[[], Any], delay: float, label: str):
        self.path = path
        self.delay = float(delay)
        self.label = label
        self._snapshot = snapshot
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self.writes = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self):
        with self._lock:
            if self._timer is not None:
                return
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self):
        with self._lock:
            self._timer = None
        self.write_now()

    def write_now(self) -> bool:
        data = self._snapshot()
        try:
            write_json_atomic(self.path, data)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save {self.label} to disk: {e}")
            return False
        self.writes += 1
        logger.info(f"Saved {len(data)} {self.label} to disk")
        return True

    def cancel(self) -> bool:
        """Disarm a pending timer; returns True if one was armed."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    def close(self):
        """Flush synchronously if a write was pending."""
        if self.cancel():
            self.write_now()
