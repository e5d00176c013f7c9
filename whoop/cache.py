"""
In-memory response cache with per-entry TTL.

Owned by a single WhoopClient.  All access goes through one lock so
concurrent readers and writers (tasks or threads) never see a torn map.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from utils.schemas import CacheEntry

_SCALARS = (str, int, float, bool)


def make_cache_key(path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Deterministic key from a resource path and its query parameters.

    Parameters are sorted by name so ``{"a": 1, "b": 2}`` and
    ``{"b": 2, "a": 1}`` produce the same key.  ``None`` values are dropped;
    non-scalar values raise TypeError.
    """
    return f"{path}?{urlencode(canonical_params(params))}"


def canonical_params(params: Optional[Mapping[str, Any]]) -> Tuple[Tuple[str, str], ...]:
    if not params:
        return ()
    items = []
    for name, value in params.items():
        if value is None:
            continue
        if not isinstance(value, _SCALARS):
            raise TypeError(
                f"Query parameter {name!r} must be a scalar, got {type(value).__name__}"
            )
        if isinstance(value, bool):
            value = "true" if value else "false"
        items.append((str(name), str(value)))
    return tuple(sorted(items))


class ResponseCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached payload, or ``default`` if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not entry.is_fresh(self._clock()):
                del self._entries[key]
                return default
            return entry.payload

    def set(self, key: str, payload: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                expires_at=self._clock() + ttl,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
