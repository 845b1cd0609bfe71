import logging
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: object
    computed_at: float


class ResultCache:
    """
    In-process store of analysis results keyed by the requested page URL.

    Entries expire ttl seconds after they were computed. Expired entries are
    treated as missing but stay in memory until the same key is stored again.
    """

    def __init__(self, ttl=3600, clock=time.time):
        self.ttl = ttl
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self._key_locks = {}

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            logger.debug("Cache miss for %s", key)
            return None

        if self.clock() - entry.computed_at >= self.ttl:
            logger.debug("Cache entry for %s expired", key)
            return None

        logger.debug("Cache hit for %s", key)
        return entry.value

    def put(self, key, value):
        entry = CacheEntry(key=key, value=value, computed_at=self.clock())
        with self._lock:
            self._entries[key] = entry

    def clear(self):
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._key_locks.clear()
        return count

    def get_or_compute(self, key, compute):
        """
        Return the cached value for key, or call compute() and store its result.

        Concurrent callers asking for the same key wait for a single
        computation instead of each running their own. Exceptions from
        compute() propagate and nothing is stored.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            # Another caller may have filled the entry while we waited.
            value = self.get(key)
            if value is not None:
                return value

            value = compute()
            self.put(key, value)
            return value
