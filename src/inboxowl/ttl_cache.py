"""Expiring key/value caches, in memory or persisted in the mail store."""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Callable, Hashable

from .constants import SYNC_THROTTLE_SECONDS

if TYPE_CHECKING:
    from .store import MailStore

_MISSING = object()


class TTLCache:
    """An in-memory key/value store whose entries expire.

    ``eviction`` decides which entry makes room once ``max_keys`` is reached:
    ``"fifo"`` drops the oldest insert, ``"lru"`` the least recently read.
    """

    def __init__(
        self,
        ttl: float,
        max_keys: int | None = None,
        eviction: str = "fifo",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if eviction not in ("fifo", "lru"):
            raise ValueError(f"Unknown eviction policy: {eviction!r}")
        self.ttl = ttl
        self.max_keys = max_keys
        self.eviction = eviction
        self._clock = clock
        self._data: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Any:
        item = self._data.get(key, _MISSING)
        if item is _MISSING:
            return default
        expires_at, value = item
        if expires_at <= self._clock():
            del self._data[key]
            return default
        if self.eviction == "lru":
            self._data.move_to_end(key)
        return value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        if key in self._data:
            del self._data[key]
        elif self.max_keys is not None and len(self._data) >= self.max_keys:
            self.purge_expired()
            if len(self._data) >= self.max_keys:
                self._data.popitem(last=False)
        self._data[key] = (self._clock() + (self.ttl if ttl is None else ttl), value)

    def expire(self, key: Hashable, ttl: float) -> bool:
        """Give an existing entry a new time to live. Returns False if absent."""
        item = self._data.get(key, _MISSING)
        if item is _MISSING or item[0] <= self._clock():
            self._data.pop(key, None)
            return False
        self._data[key] = (self._clock() + ttl, item[1])
        return True

    def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
        for k in stale:
            del self._data[k]
        return len(stale)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._data)


class PersistentTTLCache:
    """A :class:`TTLCache` lookalike whose entries live in the mail store.

    Entries survive between CLI runs. Keys are strings and values must be
    JSON serializable. The wall clock is used since expiry times are stored.
    """

    def __init__(
        self,
        store: MailStore,
        namespace: str,
        ttl: float,
        max_keys: int | None = None,
        eviction: str = "fifo",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if eviction not in ("fifo", "lru"):
            raise ValueError(f"Unknown eviction policy: {eviction!r}")
        self.store = store
        self.namespace = namespace
        self.ttl = ttl
        self.max_keys = max_keys
        self.eviction = eviction
        self._clock = clock

    def get(self, key: str, default: Any = None) -> Any:
        now = self._clock()
        row = self.store.get_cache_entry(self.namespace, key, now)
        if row is None:
            return default
        if self.eviction == "lru":
            self.store.touch_cache_entry(self.namespace, key, now)
        return json.loads(row["value_json"])

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        if (
            self.max_keys is not None
            and self.store.get_cache_entry(self.namespace, key, now) is None
            and self.store.count_cache_entries(self.namespace) >= self.max_keys
        ):
            self.purge_expired()
            if self.store.count_cache_entries(self.namespace) >= self.max_keys:
                by = "touched_at" if self.eviction == "lru" else "created_at"
                self.store.evict_oldest_cache_entry(self.namespace, by=by)
        expires_at = now + (self.ttl if ttl is None else ttl)
        self.store.put_cache_entry(self.namespace, key, json.dumps(value), expires_at, now)

    def expire(self, key: str, ttl: float) -> bool:
        """Give an existing entry a new time to live. Returns False if absent."""
        now = self._clock()
        if self.store.get_cache_entry(self.namespace, key, now) is None:
            return False
        return self.store.expire_cache_entry(self.namespace, key, now + ttl)

    def delete(self, key: str) -> None:
        self.store.delete_cache_entries(self.namespace, key)

    def clear(self) -> None:
        self.store.delete_cache_entries(self.namespace)

    def purge_expired(self) -> int:
        return self.store.purge_cache_entries(self.namespace, self._clock())

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self.purge_expired()
        return self.store.count_cache_entries(self.namespace)


class SyncThrottle:
    """Suppresses a second sync for the same user within a short window.

    Pass a :class:`PersistentTTLCache` as ``cache`` to remember syncs across
    processes; by default the window only spans this one.
    """

    def __init__(
        self,
        window: float = SYNC_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.time,
        cache: TTLCache | PersistentTTLCache | None = None,
    ) -> None:
        self.window = window
        self._clock = clock
        self._cache = cache if cache is not None else TTLCache(ttl=window, clock=clock)

    @staticmethod
    def _key(user_id: int) -> str:
        return f"sync:{user_id}"

    def was_recently_synced(self, user_id: int) -> bool:
        return self._key(user_id) in self._cache

    def record_sync(self, user_id: int) -> None:
        self._cache.set(self._key(user_id), self._clock(), ttl=self.window)

    def last_sync_time(self, user_id: int) -> float | None:
        """Timestamp of the last sync still inside the window, or None."""
        return self._cache.get(self._key(user_id))
