"""Shared HTTP response header builders."""

from __future__ import annotations

import math


def _merge_extra(headers: dict, extra: dict | None) -> dict:
    if extra:
        headers.update(extra)
        expose = [x.strip() for x in headers["Access-Control-Expose-Headers"].split(",") if x.strip()]
        for k in extra.keys():
            if k not in expose and k not in ("Content-Type",):
                expose.append(k)
        headers["Access-Control-Expose-Headers"] = ", ".join(expose)
    return headers


def build_cache_headers(*, cache: str, extra: dict | None = None) -> dict:
    headers = {
        "X-Cache": cache,
        "Access-Control-Expose-Headers": "X-Cache, X-Request-Id",
    }
    return _merge_extra(headers, extra)


def build_retry_headers(*, retry_after: float, extra: dict | None = None) -> dict:
    headers = {
        "Retry-After": str(max(1, int(math.ceil(retry_after)))),
        "Access-Control-Expose-Headers": "Retry-After, X-Request-Id",
    }
    return _merge_extra(headers, extra)
