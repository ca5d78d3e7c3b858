"""UpstreamGate: FIFO spacing, dequeue short-circuit, failures never cached."""

from __future__ import annotations

import threading
import time

import pytest

from cache_proxy.cache_store import PersistentCache
from cache_proxy.errors import UpstreamError
from cache_proxy.upstream import UpstreamResponse
from cache_proxy.upstream_gate import UpstreamGate

INTERVAL = 0.05


@pytest.fixture
def cache(data_dir):
    c = PersistentCache(data_dir, flush_delay=60)
    yield c
    c.close()


@pytest.fixture
def gate(cache):
    g = UpstreamGate(cache, ttl=3600, min_interval=INTERVAL)
    yield g
    g.close()


def recorder(stamps, body=b'{"elements":[]}', status=200):
    def build():
        stamps.append(time.monotonic())
        return UpstreamResponse(status=status, body=body)
    return build


def test_distinct_keys_are_spaced(gate):
    stamps = []
    futures = [gate.submit(f"overpass:{i}.000:0.000:r100:amenity", recorder(stamps)) for i in range(5)]
    for f in futures:
        assert f.result(timeout=5).status == 200
    assert len(stamps) == 5
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert min(gaps) >= INTERVAL * 0.95
    assert gate.metrics["dispatched"] == 5


def test_same_key_twice_hits_upstream_once(gate, cache):
    stamps = []
    key = "overpass:42.360:-71.059:r1500:amenity"
    first = gate.submit(key, recorder(stamps, body=b"A"))
    second = gate.submit(key, recorder(stamps, body=b"B"))
    assert first.result(timeout=5).body == b"A"
    assert second.result(timeout=5).body == b"A"
    assert len(stamps) == 1
    assert gate.metrics["shortCircuited"] == 1
    assert cache.peek(key).payload == b"A"


def test_short_circuit_does_not_spend_interval(cache):
    gate = UpstreamGate(cache, ttl=3600, min_interval=0.5)
    try:
        cache.set("cached", b"C")
        stamps = []
        gate.submit("a", recorder(stamps)).result(timeout=5)
        t0 = time.monotonic()
        assert gate.submit("cached", recorder(stamps)).result(timeout=5).body == b"C"
        assert time.monotonic() - t0 < 0.4
    finally:
        gate.close()


def test_failure_is_not_cached(gate, cache):
    stamps = []
    fut = gate.submit("k", recorder(stamps, body=b"busy", status=429))
    with pytest.raises(UpstreamError) as exc:
        fut.result(timeout=5)
    assert exc.value.status == 429
    assert exc.value.body == b"busy"
    assert cache.peek("k") is None
    assert gate.metrics["failed"] == 1


def test_transport_error_propagates(gate):
    def boom():
        raise UpstreamError("ReadTimeout: timed out")

    with pytest.raises(UpstreamError, match="ReadTimeout"):
        gate.submit("k", boom).result(timeout=5)


def test_none_key_always_dispatches(gate, cache):
    stamps = []
    gate.submit(None, recorder(stamps)).result(timeout=5)
    gate.submit(None, recorder(stamps)).result(timeout=5)
    assert len(stamps) == 2
    assert len(cache) == 0


def test_on_success_hook_receives_body(cache):
    seen = []
    gate = UpstreamGate(cache, ttl=3600, min_interval=0, on_success=seen.append)
    try:
        gate.submit("k", recorder([], body=b"X")).result(timeout=5)
    finally:
        gate.close()
    assert seen == [b"X"]


def test_fifo_order_across_keys(gate):
    order = []
    lock = threading.Lock()

    def build(i):
        def _b():
            with lock:
                order.append(i)
            return UpstreamResponse(status=200, body=b"{}")
        return _b

    futures = [gate.submit(f"k{i}", build(i)) for i in range(4)]
    for f in futures:
        f.result(timeout=5)
    assert order == [0, 1, 2, 3]
