"""Unit tests for the TTL cache, canonical hashing, and argument lookup helpers."""

from __future__ import annotations

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from onchain_orchestrator.utils.args import arg_number, arg_value
from onchain_orchestrator.utils.cache import TTLCache
from onchain_orchestrator.utils.hashing import canonical_json, content_key, sha256_text


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_ttl_cache_expires_entries_after_ttl() -> None:
    clock = _FakeClock()
    cache: TTLCache[str] = TTLCache(max_entries=4, ttl_seconds=10.0, clock=clock)
    cache.put("a", "value")

    clock.now = 9.9
    assert cache.get("a") == "value"
    clock.now = 10.0
    assert cache.get("a") is None

    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 0)


def test_ttl_cache_evicts_least_recently_used() -> None:
    cache: TTLCache[int] = TTLCache(max_entries=2)
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1
    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_ttl_cache_purge_expired_counts_removed_entries() -> None:
    clock = _FakeClock()
    cache: TTLCache[int] = TTLCache(ttl_seconds=1.0, clock=clock)
    cache.put("a", 1)
    cache.put("b", 2)
    clock.now = 5.0

    assert cache.purge_expired() == 2
    assert len(cache) == 0


@pytest.mark.parametrize("kwargs", [{"max_entries": 0}, {"ttl_seconds": 0}])
def test_ttl_cache_rejects_invalid_bounds(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        TTLCache(**kwargs)


def test_canonical_json_sorts_keys_and_never_raises() -> None:
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
    assert canonical_json({"x": math.nan}) == '{"x":"nan"}'
    assert canonical_json({"x": object}).startswith('{"x":"<class')


@given(st.dictionaries(st.text(max_size=8), st.integers() | st.text(max_size=8), max_size=6))
def test_content_key_ignores_mapping_insertion_order(payload: dict[str, object]) -> None:
    reversed_payload = dict(reversed(list(payload.items())))

    assert content_key("tool", payload) == content_key("tool", reversed_payload)


def test_content_key_distinguishes_parts() -> None:
    assert content_key("oca_analyze", {"a": 1}) != content_key("oca_security", {"a": 1})
    assert len(sha256_text("x")) == 64


def test_arg_value_accepts_camel_case_spelling() -> None:
    args = {"tokenBudget": 5, "network": "ethereum"}

    assert arg_value(args, "token_budget") == 5
    assert arg_value(args, "network") == "ethereum"
    assert arg_value(args, "missing_value") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(3, 3.0), ("2.5", 2.5), (" 10 ", 10.0), (True, None), ("abc", None), (math.inf, None)],
)
def test_arg_number_parses_finite_numbers_only(value: object, expected: float | None) -> None:
    assert arg_number({"value": value}, "value") == expected
