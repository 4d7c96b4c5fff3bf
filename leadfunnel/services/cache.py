"""
Result cache — short-lived memoization of aggregation results.

Entries expire lazily: an expired entry is dropped by the get() that finds it,
and every set() sweeps whatever else has expired.
One lock covers each operation, so a reader never sees a half-written entry.
"""
import logging
import threading
import time

logger = logging.getLogger('services.cache')


def make_cache_key(namespace, spec, *extra):
    parts = [namespace, spec.cache_key()]
    parts.extend(str(e) for e in extra if e is not None)
    return ':'.join(parts)


class ResultCache:
    def __init__(self, ttl_seconds=20.0, clock=time.monotonic):
        self.ttl = float(ttl_seconds)
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def _expired(self, inserted_at, now):
        return now - inserted_at > self.ttl

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            inserted_at, value = entry
            if self._expired(inserted_at, self._clock()):
                del self._entries[key]
                logger.debug("Cache entry expired: %s", key)
                return None
            return value

    def set(self, key, value):
        with self._lock:
            now = self._clock()
            stale = [k for k, (inserted_at, _) in self._entries.items() if self._expired(inserted_at, now)]
            for k in stale:
                del self._entries[k]
            self._entries[key] = (now, value)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
