import threading
import time

from iptvrelay.cache import ListingCache
from iptvrelay.config import FALLBACK_URL
from iptvrelay.models import EMPTY_SNAPSHOT, Channel
from iptvrelay.sources import build_resolver

from .fakes import FakeResponse, FakeSession

TTL = 60


def channel(name="A", url="http://a/1"):
    return Channel(id=f"t_0_{name}", name=name, group="Other", candidates=(url,))


class CountingResolver:

    def __init__(self, result=None, error=None):
        self.result = [channel()] if result is None else result
        self.error = error
        self.calls = 0
        self.release = threading.Event()
        self.release.set()
        self._lock = threading.Lock()

    def resolve(self):
        with self._lock:
            self.calls += 1
        self.release.wait(5)
        if self.error:
            raise self.error
        return list(self.result)


def wait_for(predicate, timeout=5):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def test_fresh_snapshot_is_reused(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, clock=clock)
    first = cache.get()
    clock.advance(TTL / 2)
    assert cache.get() is first
    assert resolver.calls == 1
    assert first.fetched_at == 1000.0


def test_expired_snapshot_refreshes(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, clock=clock)
    first = cache.get()
    clock.advance(TTL * 2)
    second = cache.get()
    assert second is not first
    assert second.fetched_at == clock.now
    assert resolver.calls == 2


def test_force_refresh_bypasses_ttl(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, clock=clock)
    first = cache.get()
    assert cache.get(force_refresh=True) is not first
    assert resolver.calls == 2


def test_concurrent_callers_share_one_refresh(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, clock=clock)
    cache.get()
    clock.advance(TTL * 2)

    resolver.release.clear()
    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get())) for _ in range(8)]
    for t in threads:
        t.start()
    wait_for(lambda: resolver.calls == 2)
    time.sleep(0.1)
    resolver.release.set()
    for t in threads:
        t.join(5)

    assert resolver.calls == 2
    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert results[0].fetched_at == clock.now


def test_failure_keeps_previous_snapshot(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, clock=clock)
    first = cache.get()

    resolver.error = RuntimeError("upstream exploded")
    clock.advance(TTL * 2)
    assert cache.get() is first

    resolver.error = None
    resolver.result = []
    assert cache.get(force_refresh=True) is first


def test_first_run_failure_returns_empty_snapshot(clock):
    cache = ListingCache(CountingResolver(error=RuntimeError("down")), ttl=TTL, clock=clock)
    snap = cache.get()
    assert snap is EMPTY_SNAPSHOT
    assert len(snap) == 0
    assert cache.snapshot is None


def test_waiting_caller_gives_up_with_previous_snapshot(clock):
    resolver = CountingResolver()
    cache = ListingCache(resolver, ttl=TTL, refresh_wait=0.05, clock=clock)
    first = cache.get()
    resolver.release.clear()

    leader = threading.Thread(target=cache.get, kwargs={'force_refresh': True})
    leader.start()
    wait_for(lambda: resolver.calls == 2)
    assert cache.get(force_refresh=True) is first

    resolver.release.set()
    leader.join(5)
    assert resolver.calls == 2


def test_first_run_waiter_blocks_until_listing_exists(clock):
    resolver = CountingResolver()
    resolver.release.clear()
    cache = ListingCache(resolver, ttl=TTL, refresh_wait=0.05, clock=clock)

    leader = threading.Thread(target=cache.get)
    leader.start()
    wait_for(lambda: resolver.calls == 1)

    results = []
    waiter = threading.Thread(target=lambda: results.append(cache.get()))
    waiter.start()
    time.sleep(0.3)
    assert results == []

    resolver.release.set()
    leader.join(5)
    waiter.join(5)
    assert resolver.calls == 1
    assert len(results[0]) == 1
    assert results[0] is cache.snapshot


def test_fallback_only_mode(config, clock):
    config['sources'] = [
        {'type': 'scrape', 'tag': 'site', 'url': "http://site.test/"},
        {'type': 'playlist', 'tag': 'user', 'url': "http://user.test/list.m3u", 'merge': True},
    ]
    config['fallback_channels'] = [
        {'name': "Channel Unavailable", 'url': FALLBACK_URL},
        {'name': "Promo", 'url': "http://promo.test/loop.mp4"},
    ]
    session = FakeSession({"http://site.test/": FakeResponse(502)})
    cache = ListingCache(build_resolver(config, session), ttl=TTL, clock=clock)

    snap = cache.get(True)
    assert [ch.name for ch in snap.channels] == ["Channel Unavailable", "Promo"]
    assert [ch.candidates for ch in snap.channels] == [(FALLBACK_URL,), ("http://promo.test/loop.mp4",)]
