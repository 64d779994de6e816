# api/cache.py
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from schemas.models import FrozenModel, NormalizedEvent

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 120.0


class CachedResponse(FrozenModel):
    events: Tuple[NormalizedEvent, ...]
    fetched_at: datetime


class CacheEntry(FrozenModel):
    key: str
    value: CachedResponse
    expires_at: float


class CacheStore:
    """In-process TTL cache of normalized upstream responses.

    Entries are never mutated: a refresh replaces the whole entry. Nothing is
    invalidated early, so staleness is bounded only by the TTL. Keys are not
    capped; expired ones are purged at most once per TTL period on write.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        # key -> [lock, waiters]
        self._pending: Dict[str, List] = {}
        self._next_purge = clock() + ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[CachedResponse]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: CachedResponse) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(key=key, value=value, expires_at=now + self.ttl_seconds)
        with self._lock:
            if now >= self._next_purge:
                self._purge_locked(now)
            self._entries[key] = entry
        return entry

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        dead = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in dead:
            del self._entries[key]
        self._next_purge = now + self.ttl_seconds
        if dead:
            logger.debug("Purged %d expired cache entries", len(dead))
        return len(dead)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @contextmanager
    def _inflight(self, key: str):
        with self._lock:
            slot = self._pending.get(key)
            if slot is None:
                slot = self._pending[key] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._pending[key]

    def get_or_fill(
        self,
        key: str,
        loader: Callable[[], CachedResponse],
        bypass: bool = False,
    ) -> Tuple[CachedResponse, bool]:
        """Return ``(value, cached)``, calling ``loader`` at most once per key per miss window.

        With ``bypass`` the read is skipped but the fresh value still
        replaces whatever was stored.
        """
        if not bypass:
            hit = self.get(key)
            if hit is not None:
                return hit, True

        with self._inflight(key):
            if not bypass:
                # another request may have filled it while we waited
                hit = self.get(key)
                if hit is not None:
                    return hit, True
            value = loader()
            self.put(key, value)
            return value, False
