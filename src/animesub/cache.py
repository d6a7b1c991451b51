from __future__ import annotations

import time
from typing import Any, Dict, Optional, Tuple


class TTLCache:
    """Very small in-memory cache with TTL semantics.

    Entries expire lazily on read; ``sweep()`` drops everything already
    expired and runs on every ``put()``. Optionally bounds the number of
    items via ``max_size``: past it, the entries closest to expiry go first.

    Only used from the event loop thread, so no locking.
    """

    def __init__(self, default_ttl: float = 600.0, max_size: int | None = None) -> None:
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._store: Dict[str, Tuple[float, Any]] = {}

    def _now(self) -> float:
        return time.monotonic()

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Optional[Any]:
        item = self._store.get(key)
        if item is None:
            return None
        expiry, value = item
        if expiry <= self._now():
            del self._store[key]
            return None
        return value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_value = self._default_ttl if ttl is None else ttl
        self.sweep()
        self._store[key] = (self._now() + ttl_value, value)
        if self._max_size is not None and len(self._store) > self._max_size:
            by_expiry = sorted(self._store.items(), key=lambda kv: kv[1][0])
            for stale_key, _item in by_expiry[: len(self._store) - self._max_size]:
                self._store.pop(stale_key, None)

    def sweep(self) -> int:
        now = self._now()
        expired = [k for k, (exp, _v) in self._store.items() if exp <= now]
        for k in expired:
            del self._store[k]
        return len(expired)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
