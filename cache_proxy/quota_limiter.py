"""Rolling-window quota tracker with exponential backoff.

The limiter never blocks: callers ask ``can_request()`` and, when refused,
fall back to whatever is cached (even expired) or surface ``retry_after()``.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Optional, Sequence

from cache_proxy.constants import BACKOFF_SECONDS, OPENSKY_SAFETY_MARGIN, QUOTA_WINDOW_SECONDS
from cache_proxy.logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")


@dataclass
class QuotaState:
    request_timestamps: Deque[float] = field(default_factory=deque)
    backoff_level: int = 0
    backoff_until: float = 0.0
    last_success_at: Optional[float] = None


class QuotaLimiter:
    def __init__(
        self,
        daily_quota: int,
        safety_margin: float = OPENSKY_SAFETY_MARGIN,
        window_seconds: float = QUOTA_WINDOW_SECONDS,
        backoff_seconds: Sequence[float] = BACKOFF_SECONDS,
        clock: Callable[[], float] = time.time,
        name: str = "opensky",
    ):
        if daily_quota <= 0:
            raise ValueError(f"daily_quota must be positive, got {daily_quota}")
        self.daily_quota = int(daily_quota)
        self.safety_margin = float(safety_margin)
        self.window_seconds = float(window_seconds)
        self.backoff_seconds = tuple(backoff_seconds)
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self.state = QuotaState()

    @property
    def budget(self) -> int:
        return int(math.floor(self.safety_margin * self.daily_quota))

    def _prune(self, now: float):
        ts = self.state.request_timestamps
        while ts and now - ts[0] >= self.window_seconds:
            ts.popleft()

    def _remaining(self) -> int:
        return self.budget - len(self.state.request_timestamps)

    def _min_spacing(self, now: float) -> float:
        """Spread the remaining budget over the time left before the oldest request ages out."""
        remaining = self._remaining()
        if remaining <= 0:
            return math.inf
        ts = self.state.request_timestamps
        time_left = (ts[0] + self.window_seconds - now) if ts else self.window_seconds
        return max(0.0, time_left) / remaining

    def _wait_seconds(self, now: float) -> float:
        waits = [max(0.0, self.state.backoff_until - now)]
        ts = self.state.request_timestamps
        if self._remaining() <= 0:
            # Budget frees up when the oldest in-window request expires
            waits.append(max(0.0, ts[0] + self.window_seconds - now) if ts else 0.0)
        elif ts:
            waits.append(max(0.0, ts[-1] + self._min_spacing(now) - now))
        return max(waits)

    def can_request(self) -> bool:
        now = self._clock()
        with self._lock:
            self._prune(now)
            if self._remaining() <= 0:
                return False
            return self._wait_seconds(now) <= 0.0

    def retry_after(self) -> float:
        now = self._clock()
        with self._lock:
            self._prune(now)
            return self._wait_seconds(now)

    def throttle_reason(self) -> Optional[str]:
        now = self._clock()
        with self._lock:
            self._prune(now)
            if self.state.backoff_until > now:
                return "backoff"
            if self._remaining() <= 0:
                return "quota"
            if self._wait_seconds(now) > 0.0:
                return "spacing"
            return None

    def record_request(self):
        now = self._clock()
        with self._lock:
            self._prune(now)
            self.state.request_timestamps.append(now)

    def record_success(self):
        with self._lock:
            if self.state.backoff_level:
                logger.info(f"[{self.name}] upstream recovered, backoff level {self.state.backoff_level} → 0")
            self.state.backoff_level = 0
            self.state.backoff_until = 0.0
            self.state.last_success_at = self._clock()

    def record_rate_limited(self) -> float:
        """Apply the next backoff step after a 429; returns the delay in seconds."""
        now = self._clock()
        with self._lock:
            last = len(self.backoff_seconds) - 1
            delay = float(self.backoff_seconds[min(self.state.backoff_level, last)])
            self.state.backoff_level = min(self.state.backoff_level + 1, last)
            self.state.backoff_until = now + delay
            level = self.state.backoff_level
        logger.warning(f"[{self.name}] 429 from upstream → backing off {delay:.0f}s (level {level})")
        return delay

    def status(self) -> dict:
        now = self._clock()
        with self._lock:
            self._prune(now)
            spacing = self._min_spacing(now)
            return {
                "requestsLast24h": len(self.state.request_timestamps),
                "remaining": max(0, self._remaining()),
                "dailyQuota": self.daily_quota,
                "budget": self.budget,
                "backoffLevel": self.state.backoff_level,
                "backoffRemaining": round(max(0.0, self.state.backoff_until - now), 1),
                "minSpacing": None if math.isinf(spacing) else round(spacing, 1),
                "lastSuccessAt": self.state.last_success_at,
            }
