"""
Bounded TTL cache for authenticated principals.

Entries live in a Django cache backend (``CACHES["principals"]`` by default,
a LocMemCache whose MAX_ENTRIES bounds the size). Each entry also carries its
own deadline from an injectable clock, so expiry can be driven in tests.
"""

import logging
import signal
import threading
import time

from django.core.cache import caches

logger = logging.getLogger(__name__)

PRINCIPALS_ALIAS = "principals"


class PrincipalCache:
    """TTL cache keyed by user id, wrapping a Django cache backend."""

    def __init__(self, backend=None, ttl_seconds=None, clock=time.monotonic):
        self.backend = backend if backend is not None else caches[PRINCIPALS_ALIAS]
        if ttl_seconds is None:
            ttl_seconds = self.backend.default_timeout
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._keys = set()
        self._last_sweep = clock()

    def lookup(self, key):
        entry = self.backend.get(key)
        if entry is None:
            self._keys.discard(key)
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self.evict(key)
            return None
        return value

    def insert(self, key, value):
        expires_at = self._clock() + self.ttl_seconds
        self.backend.set(key, (value, expires_at), self.ttl_seconds)
        self._keys.add(key)

    def evict(self, key):
        self._keys.discard(key)
        return self.backend.delete(key)

    def sweep(self):
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        removed = 0
        for key in list(self._keys):
            entry = self.backend.get(key)
            if entry is None:
                self._keys.discard(key)
            elif now >= entry[1]:
                self.evict(key)
                removed += 1
        self._last_sweep = now
        if removed:
            logger.debug("Swept %s expired principals", removed)
        return removed

    def sweep_if_due(self):
        if self._clock() - self._last_sweep >= self.ttl_seconds:
            return self.sweep()
        return 0

    def clear(self):
        self._keys.clear()
        self.backend.clear()

    def __len__(self):
        return sum(1 for key in list(self._keys) if self.lookup(key) is not None)

    def __contains__(self, key):
        return self.lookup(key) is not None


def clear_on_signals(cache, signums=(signal.SIGTERM, signal.SIGINT)):
    """
    Clear ``cache`` when one of ``signums`` arrives, then defer to whatever
    handler was installed before (the server's own shutdown logic).
    Only the main thread may install handlers; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        return

    for signum in signums:
        previous = signal.getsignal(signum)

        def handler(received, frame, previous=previous):
            cache.clear()
            logger.info("Principal cache cleared on signal %s", received)
            if callable(previous):
                previous(received, frame)
            elif previous == signal.SIG_DFL:
                signal.signal(received, signal.SIG_DFL)
                signal.raise_signal(received)

        signal.signal(signum, handler)
