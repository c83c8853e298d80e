"""
Listing Cache
TTL cache over the source resolver with single-flight refresh
"""

import logging
import threading
import time
from typing import Callable, Optional

from .models import EMPTY_SNAPSHOT, ListingSnapshot

log = logging.getLogger(__name__)


class _Flight:
    """One in-flight refresh that concurrent callers wait on"""

    def __init__(self):
        self.done = threading.Event()
        self.result: ListingSnapshot = EMPTY_SNAPSHOT


class ListingCache:

    def __init__(self, resolver, ttl: float, refresh_wait: float = 30,
                 clock: Callable[[], float] = time.time):
        self.resolver = resolver
        self.ttl = ttl
        self.refresh_wait = refresh_wait
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[ListingSnapshot] = None
        self._flight: Optional[_Flight] = None
        self.refreshes = 0

    @property
    def snapshot(self) -> Optional[ListingSnapshot]:
        """Last stored snapshot, without any I/O"""
        return self._snapshot

    def _fresh(self, snap: Optional[ListingSnapshot]) -> bool:
        return snap is not None and (self._clock() - snap.fetched_at) < self.ttl

    def get(self, force_refresh: bool = False) -> ListingSnapshot:
        """Current listing. Never raises; empty snapshot if nothing was ever resolved."""
        snap = self._snapshot
        if not force_refresh and self._fresh(snap):
            return snap

        with self._lock:
            flight = self._flight
            leader = flight is None
            if leader:
                # Another caller may have refreshed while we waited for the lock
                snap = self._snapshot
                if not force_refresh and self._fresh(snap):
                    return snap
                flight = self._flight = _Flight()

        if leader:
            return self._refresh(flight)

        if self._snapshot is None:
            # Nothing to serve yet; the leader's resolve is bounded by its own timeouts
            flight.done.wait()
            return flight.result

        if flight.done.wait(self.refresh_wait):
            return flight.result
        log.warning(f"Refresh still running after {self.refresh_wait}s, serving previous listing")
        return self._snapshot or EMPTY_SNAPSHOT

    def _refresh(self, flight: _Flight) -> ListingSnapshot:
        channels = []
        try:
            self.refreshes += 1
            channels = self.resolver.resolve()
        except Exception as e:
            log.error(f"Listing refresh failed: {type(e).__name__}: {e}")
        finally:
            with self._lock:
                if channels:
                    self._snapshot = ListingSnapshot(fetched_at=self._clock(), channels=tuple(channels))
                    log.info(f"Listing refreshed: {len(channels)} channels")
                elif self._snapshot is not None:
                    log.warning("Refresh produced no channels, keeping previous listing")
                flight.result = self._snapshot or EMPTY_SNAPSHOT
                self._flight = None
            flight.done.set()
        return flight.result
