import threading

import pytest

from domain.errors import CacheUnavailable
from domain.models import ImageField, OutputContainer, Position, QualityTier, TextField, TextStyle
from services.render_cache import RenderCache, compute_fingerprint


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    c = RenderCache(capacity=10, ttl_seconds=60, sweep_interval_seconds=0, clock=clock)
    yield c
    c.close()


FIELDS = [TextField(name="name", id="1", position=Position(50, 40)), ImageField(name="photo", id="2")]


def _fp(**overrides):
    params = dict(
        template="templates/cert.png",
        fields=FIELDS,
        values={"name": "Ada"},
        quality=QualityTier.MEDIUM,
        width=1000,
        height=1400,
    )
    params.update(overrides)
    return compute_fingerprint(**params)


def test_fingerprint_is_stable_and_order_independent_for_values():
    assert _fp(values={"a": "1", "b": 2}) == _fp(values={"b": 2, "a": "1"})


def test_fingerprint_changes_with_inputs_that_matter():
    base = _fp()
    assert _fp(values={"name": "Grace"}) != base
    assert _fp(quality=QualityTier.HIGH) != base
    assert _fp(width=1001) != base
    assert _fp(template="templates/other.png") != base
    assert _fp(fields=[TextField(name="name", id="1", position=Position(50, 41)), FIELDS[1]]) != base
    assert _fp(fields=[TextField(name="name", id="1", position=Position(50, 40), depth=5), FIELDS[1]]) != base
    assert _fp(container=OutputContainer.WEBP) != _fp(container=OutputContainer.JPEG)


def test_fingerprint_ignores_non_scalar_values_and_style():
    base = _fp()
    assert _fp(values={"name": "Ada", "meta": {"x": 1}, "tags": [1, 2]}) == base
    assert _fp(values={"name": "Ada", "_designFields": [{"name": "x"}]}) == base
    styled = TextField(name="name", id="1", position=Position(50, 40), style=TextStyle(color="#ff0000"))
    assert _fp(fields=[styled, FIELDS[1]]) == base


def test_fingerprint_hashes_raw_bytes():
    assert _fp(values={"photo": b"one"}) != _fp(values={"photo": b"two"})
    assert _fp(template=b"\x89PNG...") != _fp(template=b"\x89PNG,,,")


def test_put_then_get_returns_immutable_entry(cache, tmp_path):
    entry = cache.put("fp1", b"bytes", tmp_path / "a.png", container=OutputContainer.PNG, width=10, height=20)
    got = cache.get("fp1")
    assert got is entry
    assert got.encoded_bytes == b"bytes"
    assert got.stored_path == tmp_path / "a.png"
    with pytest.raises(AttributeError):
        got.encoded_bytes = b"other"


def test_expired_entries_are_misses(cache, clock):
    cache.put("fp1", b"x")
    clock.now += 61
    assert cache.get("fp1") is None
    assert len(cache) == 0


def test_capacity_pressure_evicts_oldest_fifth(cache, clock):
    for i in range(10):
        cache.put(f"fp{i}", b"x")
        clock.now += 1
    cache.put("fp-new", b"x")
    assert cache.get("fp0") is None
    assert cache.get("fp1") is None
    assert cache.get("fp2") is not None
    assert cache.get("fp-new") is not None
    assert len(cache) == 9


def test_capacity_pressure_prefers_expired_entries(cache, clock):
    for i in range(10):
        cache.put(f"fp{i}", b"x")
        if i == 4:
            clock.now += 100  # first five are now stale
    cache.put("fp-new", b"x")
    assert len(cache) == 6
    assert all(cache.get(f"fp{i}") is not None for i in range(5, 10))


def test_sweep_drops_expired(cache, clock):
    cache.put("old", b"x")
    clock.now += 30
    cache.put("fresh", b"x")
    clock.now += 31
    assert cache.sweep() == 1
    assert cache.get("fresh") is not None


def test_closed_cache_is_unavailable(clock):
    c = RenderCache(capacity=5, ttl_seconds=60, sweep_interval_seconds=0, clock=clock)
    c.close()
    with pytest.raises(CacheUnavailable):
        c.get("fp")
    with pytest.raises(CacheUnavailable):
        c.put("fp", b"x")


def test_background_sweeper_starts_and_stops():
    with RenderCache(capacity=5, ttl_seconds=60, sweep_interval_seconds=0.01) as c:
        sweeper = c._sweeper
        assert sweeper is not None and sweeper.is_alive()
    assert not sweeper.is_alive()


def test_concurrent_puts_and_gets(cache):
    errors = []

    def worker(n):
        try:
            for i in range(200):
                key = f"w{n}-{i % 7}"
                cache.put(key, b"payload")
                entry = cache.get(key)
                assert entry is None or entry.encoded_bytes == b"payload"
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(cache) <= cache.capacity
