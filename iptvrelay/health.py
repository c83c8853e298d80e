"""
Health Prober
Periodic reachability checks of every candidate URL in the listing
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import requests

from .models import HealthRecord, ListingSnapshot

log = logging.getLogger(__name__)

# ============================================================================
# HEALTH TABLE
# ============================================================================

class HealthTable:
    """URL -> latest HealthRecord. Records are superseded, never removed."""

    def __init__(self):
        self._records: Dict[str, HealthRecord] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[HealthRecord]:
        with self._lock:
            return self._records.get(url)

    def record(self, rec: HealthRecord) -> None:
        with self._lock:
            self._records[rec.url] = rec

    def snapshot(self) -> Dict[str, HealthRecord]:
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 400


def distinct_candidates(snapshot: ListingSnapshot) -> List[str]:
    """Every candidate URL once, in listing order"""
    urls = {}
    for ch in snapshot.channels:
        for url in ch.candidates:
            urls.setdefault(url, None)
    return list(urls)

# ============================================================================
# PROBER
# ============================================================================

class HealthProber:

    def __init__(self, cache, table: HealthTable, session: Optional[requests.Session] = None,
                 interval: float = 30, timeout: float = 5, concurrency: int = 8,
                 headers: Optional[dict] = None, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.table = table
        self.session = session or requests.Session()
        self.interval = interval
        self.timeout = timeout
        self.concurrency = max(1, int(concurrency))
        self.headers = headers or {'User-Agent': 'Mozilla/5.0'}
        self._clock = clock
        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles = 0
        self.last_cycle: Optional[dict] = None

    def probe(self, url: str) -> HealthRecord:
        """Single reachability check; never raises"""
        start = time.monotonic()
        status = 0
        try:
            # Body is not consumed, only status and connect are tested
            with self.session.get(url, headers=self.headers, timeout=self.timeout,
                                  stream=True, allow_redirects=True) as r:
                status = r.status_code
        except requests.Timeout:
            log.debug(f"Probe timeout: {url}")
        except Exception as e:
            log.debug(f"Probe failed: {url} ({type(e).__name__})")
        latency = int((time.monotonic() - start) * 1000)
        return HealthRecord(url=url, reachable=is_success(status), status_code=status,
                            observed_at=self._clock(), latency_ms=latency)

    def _probe_and_record(self, url: str) -> bool:
        try:
            rec = self.probe(url)
        except Exception as e:
            log.error(f"Probe crashed for {url}: {e}")
            rec = HealthRecord(url=url, reachable=False, status_code=0, observed_at=self._clock())
        self.table.record(rec)
        return rec.reachable

    def run_cycle(self) -> dict:
        """Probe every distinct candidate once; returns a cycle summary"""
        with self._cycle_lock:
            started = self._clock()
            urls = distinct_candidates(self.cache.get(False))

            with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="probe") as executor:
                results = list(executor.map(self._probe_and_record, urls))

            ok = sum(1 for r in results if r)
            self.cycles += 1
            self.last_cycle = {
                'started': started,
                'finished': self._clock(),
                'probed': len(urls),
                'reachable': ok,
                'unreachable': len(urls) - ok
            }
            log.info(f"Health cycle {self.cycles}: {ok}/{len(urls)} reachable")
            return self.last_cycle

    def run_forever(self):
        log.info("Health prober started")
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                log.error(f"Health cycle error: {e}")
            self._stop.wait(self.interval)
        log.info("Health prober stopped")

    def start(self) -> threading.Thread:
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="health-prober", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
