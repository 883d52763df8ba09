"""Tests for the TTL result cache."""

from __future__ import annotations

import pytest

from piilens.cache import ResultCache, content_hash
from piilens.models.schemas import Detection, DetectionResult, DetectionSource, PIIType


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(text: str = "123-45-6789") -> DetectionResult:
    return DetectionResult(
        success=True,
        detections=[Detection(type=PIIType.SSN, text=text, confidence=0.9, source=DetectionSource.PATTERN)],
        processing_time=12.5,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(ttl_seconds=300, clock=clock)


class TestContentHash:
    def test_known_values(self):
        assert content_hash("") == "00000000:0"
        assert content_hash("a") == "00000061:1"
        assert content_hash("ab") == f"{97 * 31 + 98:08x}:2"

    def test_deterministic(self):
        assert content_hash("some document") == content_hash("some document")

    def test_bytes_and_text(self):
        assert content_hash(b"abc") == content_hash("abc")
        assert content_hash(b"abc") != content_hash(b"abd")

    def test_length_suffix(self):
        assert content_hash("x" * 1000).endswith(":1000")

    def test_wraps_to_32_bits(self):
        h = content_hash("z" * 500).split(":")[0]
        assert len(h) == 8


class TestResultCache:
    def test_miss_then_hit(self, cache):
        assert cache.get("k") is None
        cache.put("k", _result())
        assert cache.get("k") == _result()
        stats = cache.stats()
        assert (stats.size, stats.hits, stats.misses) == (1, 1, 1)

    def test_returns_copies(self, cache):
        original = _result()
        cache.put("k", original)
        first, second = cache.get("k"), cache.get("k")
        assert first == second == original
        assert first is not second
        assert first.detections is not original.detections

    def test_expiry(self, cache, clock):
        cache.put("k", _result())
        clock.now += 300
        assert cache.get("k") is not None
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_purge_expired(self, cache, clock):
        cache.put("old", _result())
        clock.now += 200
        cache.put("new", _result("987-65-4321"))
        clock.now += 150
        assert cache.purge_expired() == 1
        assert cache.get("new") is not None

    def test_clear(self, cache):
        cache.put("a", _result())
        cache.put("b", _result())
        cache.get("a")
        assert cache.clear() == 2
        assert cache.stats().model_dump() == {"size": 0, "ttl_seconds": 300, "hits": 0, "misses": 0}
