"""
Token Store
===========
Holds the single Oura token pair for the process. The dashboard serves one
principal with one connected ring, so there is exactly one slot.

Writes always swap the whole TokenPair under a lock. Two requests that both
see an expired token may both refresh; compare_and_swap lets the loser detect
that and reuse the winner's token instead of clobbering it.
"""

from __future__ import annotations

import threading
from functools import lru_cache
from typing import Optional, Protocol

from app.models.oura import TokenPair


class TokenStore(Protocol):
    def get(self) -> Optional[TokenPair]: ...

    def set(self, pair: TokenPair) -> None: ...

    def compare_and_swap(self, expected: Optional[TokenPair], new: TokenPair) -> bool: ...

    def clear(self) -> None: ...


class InMemoryTokenStore:
    """Process-memory TokenStore. Nothing survives a restart."""

    def __init__(self, pair: Optional[TokenPair] = None) -> None:
        self._pair = pair
        self._lock = threading.Lock()

    def get(self) -> Optional[TokenPair]:
        with self._lock:
            return self._pair

    def set(self, pair: TokenPair) -> None:
        with self._lock:
            self._pair = pair

    def compare_and_swap(self, expected: Optional[TokenPair], new: TokenPair) -> bool:
        """Replace the pair only if it is still *expected*. Returns True on swap."""
        with self._lock:
            if self._pair is not expected:
                return False
            self._pair = new
            return True

    def clear(self) -> None:
        with self._lock:
            self._pair = None


@lru_cache
def get_token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()
