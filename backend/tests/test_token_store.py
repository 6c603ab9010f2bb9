"""
Tests for the Token Store
=========================
Covers:
- get/set/clear on the single slot
- compare_and_swap: swaps only when the expected pair is still current
- TokenPair expiry helpers, including the five minute early-refresh buffer

Run: pytest tests/test_token_store.py -v
"""

from __future__ import annotations

import threading

from app.models.oura import EXPIRY_BUFFER_MS, OuraTokenResponse, TokenPair
from app.services.token_store import InMemoryTokenStore


def _pair(tag: str, expires_at: int = 10_000) -> TokenPair:
    return TokenPair(f"access-{tag}", f"refresh-{tag}", expires_at)


class TestInMemoryTokenStore:

    def test_starts_empty(self):
        assert InMemoryTokenStore().get() is None

    def test_set_replaces_whole_pair(self):
        store = InMemoryTokenStore(_pair("a"))
        store.set(_pair("b"))
        assert store.get() == _pair("b")

    def test_clear(self):
        store = InMemoryTokenStore(_pair("a"))
        store.clear()
        assert store.get() is None

    def test_compare_and_swap_succeeds_on_expected(self):
        original = _pair("a")
        store = InMemoryTokenStore(original)

        assert store.compare_and_swap(original, _pair("b")) is True
        assert store.get() == _pair("b")

    def test_compare_and_swap_fails_when_pair_changed(self):
        original = _pair("a")
        store = InMemoryTokenStore(original)
        store.set(_pair("winner"))

        assert store.compare_and_swap(original, _pair("loser")) is False
        assert store.get() == _pair("winner")

    def test_concurrent_swaps_only_one_wins(self):
        original = _pair("a")
        store = InMemoryTokenStore(original)
        results: list[bool] = []
        barrier = threading.Barrier(8)

        def _attempt(i: int) -> None:
            barrier.wait()
            results.append(store.compare_and_swap(original, _pair(str(i))))

        threads = [threading.Thread(target=_attempt, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert store.get() != original


class TestTokenPair:

    def test_is_expired_five_minutes_early(self):
        pair = _pair("a", expires_at=1_000_000)
        assert pair.is_expired(now_ms=1_000_000 - EXPIRY_BUFFER_MS - 1) is False
        assert pair.is_expired(now_ms=1_000_000 - EXPIRY_BUFFER_MS) is True
        assert pair.is_expired(now_ms=1_000_000) is True
        assert EXPIRY_BUFFER_MS == 300_000

    def test_from_response_defaults(self):
        token = OuraTokenResponse(access_token="new")
        pair = TokenPair.from_response(token, fallback_refresh_token="old-refresh", now_ms=0)

        assert pair.refresh_token == "old-refresh"
        assert pair.expires_at == 3_600_000

    def test_from_response_uses_expires_in(self):
        token = OuraTokenResponse(access_token="new", refresh_token="r", expires_in=86400)
        pair = TokenPair.from_response(token, now_ms=1_000)

        assert pair.refresh_token == "r"
        assert pair.expires_at == 1_000 + 86_400_000
