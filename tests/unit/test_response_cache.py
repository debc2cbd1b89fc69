from __future__ import annotations

import pytest

from plangate.core.cache.fingerprint import fingerprint
from plangate.core.cache.response_cache import ResponseCache
from plangate.core.providers.base import ProviderRequest, ProviderResponse


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _resp(content: str = "ok") -> ProviderResponse:
    return ProviderResponse(content=content, model="m1", provider_id="acme", tokens_used=3, latency_ms=40)


def _req(**overrides) -> ProviderRequest:
    fields = {"prompt": "mine 5 iron", "model": "m1", "max_tokens": 800, "temperature": 0.7, "system_prompt": "sys"}
    fields.update(overrides)
    return ProviderRequest(**fields)


def test_fingerprint_is_stable_and_sensitive():
    fp = fingerprint("acme", _req())
    assert len(fp) == 64
    assert fp == fingerprint("ACME", _req())
    assert fp != fingerprint("other", _req())
    assert fp != fingerprint("acme", _req(temperature=0.8))
    assert fp != fingerprint("acme", _req(system_prompt="other"))
    assert fp != fingerprint("acme", _req(model="m2"))


def test_cache_ttl_never_returns_expired_entry():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    cache.put("fp", _resp())

    clock.now += 299
    assert cache.get("fp") == _resp()

    clock.now += 1
    assert cache.get("fp") is None
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["expirations"] == 1
    assert stats["size"] == 0


def test_cache_evicts_least_recently_used():
    cache = ResponseCache(ttl_seconds=300, max_entries=2, clock=FakeClock())
    cache.put("a", _resp("a"))
    cache.put("b", _resp("b"))
    assert cache.get("a") is not None

    cache.put("c", _resp("c"))
    assert len(cache) == 2
    assert cache.get("b") is None
    assert cache.get("a").content == "a"
    assert cache.get("c").content == "c"
    assert cache.stats()["evictions"] == 1


def test_disabled_cache_is_explicit_noop():
    cache = ResponseCache(enabled=False)
    cache.put("fp", _resp())
    assert cache.get("fp") is None
    assert len(cache) == 0
    assert cache.stats()["enabled"] is False


def test_cache_only_stores_provider_responses():
    cache = ResponseCache()
    with pytest.raises(TypeError):
        cache.put("fp", "raw text")  # type: ignore[arg-type]


def test_cache_hit_marks_response():
    hit = _resp().as_cache_hit()
    assert hit.from_cache is True
    assert hit.latency_ms == 0
    assert hit.content == "ok"


def test_cache_clear_and_validation():
    cache = ResponseCache()
    cache.put("fp", _resp())
    cache.clear()
    assert len(cache) == 0
    with pytest.raises(ValueError):
        ResponseCache(ttl_seconds=0)
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
