"""
Result cache for optimization and simulation results.

Keys are content hashes of the canonicalized request. Concurrent requests for
the same key share one computation.
"""
import hashlib
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def content_hash(payload: Any) -> str:
    """SHA-256 of a canonical JSON rendering (sorted keys, no whitespace)"""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def cache_key(namespace: str, pool_hash: str, payload: Any) -> str:
    # Pool hash first so every result for a pool can be dropped by prefix
    return f"{pool_hash}:{namespace}:{content_hash(payload)}"


class ResultCache(ABC):
    @abstractmethod
    def compute_if_absent(self, key: str, fn: Callable[[], Any], ttl: Optional[float] = None,
                          cacheable: Optional[Callable[[Any], bool]] = None) -> Tuple[Any, bool]:
        """
        Return (value, hit). On a miss `fn` runs once per key even under
        concurrent callers; `cacheable(value)` False keeps the value out of
        the cache. Backends that cannot serve raise CacheUnavailableError.
        """

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        pass

    @abstractmethod
    def invalidate_prefix(self, prefix: str) -> int:
        pass

    @abstractmethod
    def clear(self):
        pass


class _Flight:
    """A computation in progress that other callers wait on"""

    def __init__(self):
        self.done = threading.Event()
        self.value = None
        self.error: Optional[BaseException] = None


class InMemoryResultCache(ResultCache):
    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._flights: Dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _lookup(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    def cleanup_expired(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        with self._lock:
            return self._purge_expired()

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def get(self, key: str):
        with self._lock:
            entry = self._lookup(key)
        return entry[0] if entry is not None else None

    def compute_if_absent(self, key, fn, ttl=None, cacheable=None):
        ttl = self.default_ttl if ttl is None else ttl

        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self.hits += 1
                return entry[0], True
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
                self.misses += 1

        if not leader:
            logger.debug(f"Waiting on in-flight computation for {key[:16]}")
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value, True

        try:
            value = fn()
        except Exception as e:
            with self._lock:
                self._flights.pop(key, None)
            flight.error = e
            flight.done.set()
            raise

        with self._lock:
            if ttl > 0 and (cacheable is None or cacheable(value)):
                self._purge_expired()
                self._entries[key] = (value, self._clock() + ttl)
            self._flights.pop(key, None)
        flight.value = value
        flight.done.set()
        return value, False

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.info(f"Invalidated {len(keys)} cached results with prefix {prefix[:16]}")
        return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
