from __future__ import annotations

from asyncio import Lock
from collections.abc import Iterable
import time
from typing import Any


class TTLCache:
    """In-memory TTL cache keyed by tuples whose first item is a group id."""

    def __init__(self, ttl_seconds: float = 300.0) -> None:
        self._ttl = ttl_seconds
        self._lock = Lock()
        self._store: dict[Any, tuple[Any, float]] = {}

    async def get(self, key: Any) -> Any | None:
        now = time.monotonic()
        async with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            value, expires_at = entry
            if expires_at <= now:
                self._store.pop(key, None)
                return None
            return value

    async def set(self, key: Any, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        async with self._lock:
            if ttl <= 0:
                self._store.pop(key, None)
            else:
                self._store[key] = (value, time.monotonic() + ttl)

    async def invalidate_groups(self, group_ids: Iterable[str]) -> None:
        groups = {gid for gid in group_ids if gid}
        if not groups:
            return
        async with self._lock:
            stale = [
                key
                for key in self._store
                if isinstance(key, tuple) and key and key[0] in groups
            ]
            for key in stale:
                self._store.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()


# (group_id, season or "all") -> serialized season stats response
season_stats_cache = TTLCache(ttl_seconds=120.0)
