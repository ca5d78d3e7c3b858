"""Error taxonomy shared by the proxy and its client-side search loop."""

from __future__ import annotations

from typing import Optional


class UpstreamError(RuntimeError):
    """Network or HTTP failure talking to an upstream API.

    ``status`` is the upstream HTTP status when one was received, else None
    (connect/read timeout, DNS, reset).
    """

    def __init__(self, detail: str, status: Optional[int] = None, body: bytes = b"", content_type: str = ""):
        super().__init__(detail)
        self.detail = detail
        self.status = status
        self.body = body
        self.content_type = content_type

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class QuotaExhausted(RuntimeError):
    """Throttled with no cached fallback; caller should retry after ``retry_after`` seconds."""

    def __init__(self, retry_after: float, reason: str = "quota"):
        super().__init__(f"Upstream quota exhausted ({reason}); retry after {retry_after:.0f}s")
        self.retry_after = retry_after
        self.reason = reason


class SearchCancelled(RuntimeError):
    """Raised when a caller abandons a retry-to-fit search via its cancel event."""
