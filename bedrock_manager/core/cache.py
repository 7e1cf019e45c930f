"""TTL cache in front of expensive inspection and file reads."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

# Container state per server ID
INSPECT = "inspect"
# File contents per (server ID, relative path)
FILES = "files"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class Cache:
    """
    Namespaced, TTL-expiring memo store with explicit invalidation.

    A recompute that started before an invalidate (or clear) of the same key
    never stores its result, so once invalidate() returns every later get()
    sees fresh data. Concurrent misses may recompute twice; that is allowed.
    """

    def __init__(
        self,
        ttls: Optional[Dict[str, float]] = None,
        default_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache.

        Args:
            ttls: TTL in seconds per namespace
            default_ttl: TTL for namespaces not listed in ttls
            clock: Monotonic time source (injectable for tests)
        """
        self.ttls = dict(ttls or {})
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, Hashable], CacheEntry] = {}
        # Only keys with a recompute in flight are tracked here
        self._inflight: Dict[Tuple[str, Hashable], int] = {}
        self._versions: Dict[Tuple[str, Hashable], int] = {}
        self._namespace_epochs: Dict[str, int] = {}
        self._epoch = 0

    def ttl_for(self, namespace: str) -> float:
        return self.ttls.get(namespace, self.default_ttl)

    def set_ttl(self, namespace: str, ttl: float):
        self.ttls[namespace] = ttl

    def get(self, namespace: str, key: Hashable, recompute: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Return the cached value, recomputing on miss or expiry.

        Args:
            namespace: Cache namespace (e.g. "inspect")
            key: Identifier within the namespace
            recompute: Zero-argument callable producing a fresh value
            ttl: Override the namespace TTL for this entry

        Returns:
            Cached or freshly computed value

        Raises:
            Whatever recompute raises; failures are not cached
        """
        hit, value, token = self._lookup(namespace, key)
        if hit:
            return value
        try:
            value = recompute()
            self._store(namespace, key, value, token, ttl)
        finally:
            self._release(namespace, key)
        return value

    async def aget(
        self,
        namespace: str,
        key: Hashable,
        recompute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None
    ) -> Any:
        """Async variant of get(); recompute returns an awaitable."""
        hit, value, token = self._lookup(namespace, key)
        if hit:
            return value
        try:
            value = await recompute()
            self._store(namespace, key, value, token, ttl)
        finally:
            self._release(namespace, key)
        return value

    def invalidate(self, namespace: str, key: Hashable):
        """Drop one entry; visible to every get() issued after this returns."""
        with self._lock:
            self._invalidate((namespace, key))

    def invalidate_matching(self, namespace: str, match: Callable[[Hashable], bool]):
        """Drop every entry in a namespace whose key satisfies match."""
        with self._lock:
            keys = {k for k in self._entries if k[0] == namespace}
            keys.update(k for k in self._inflight if k[0] == namespace)
            for full_key in keys:
                if match(full_key[1]):
                    self._invalidate(full_key)

    def clear(self, namespace: Optional[str] = None):
        """Drop every entry, or every entry in one namespace."""
        with self._lock:
            if namespace is None:
                self._entries.clear()
                self._epoch += 1
                return
            for full_key in [k for k in self._entries if k[0] == namespace]:
                del self._entries[full_key]
            self._namespace_epochs[namespace] = self._namespace_epochs.get(namespace, 0) + 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _invalidate(self, full_key):
        self._entries.pop(full_key, None)
        if full_key in self._inflight:
            self._versions[full_key] = self._versions.get(full_key, 0) + 1

    def _token(self, full_key) -> Tuple[int, int, int]:
        return (self._epoch, self._namespace_epochs.get(full_key[0], 0), self._versions.get(full_key, 0))

    def _lookup(self, namespace: str, key: Hashable):
        full_key = (namespace, key)
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is not None:
                if self._clock() < entry.expires_at:
                    return True, entry.value, None
                del self._entries[full_key]
            self._inflight[full_key] = self._inflight.get(full_key, 0) + 1
            return False, None, self._token(full_key)

    def _store(self, namespace: str, key: Hashable, value: Any, token, ttl: Optional[float]):
        full_key = (namespace, key)
        lifetime = self.ttl_for(namespace) if ttl is None else ttl
        with self._lock:
            if self._token(full_key) != token:
                logger.debug("Discarding stale recompute for %s/%s", namespace, key)
                return
            if lifetime > 0:
                self._entries[full_key] = CacheEntry(value=value, expires_at=self._clock() + lifetime)

    def _release(self, namespace: str, key: Hashable):
        full_key = (namespace, key)
        with self._lock:
            remaining = self._inflight.get(full_key, 1) - 1
            if remaining > 0:
                self._inflight[full_key] = remaining
            else:
                self._inflight.pop(full_key, None)
                self._versions.pop(full_key, None)
