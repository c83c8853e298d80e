"""Wiring of cache, prober, selector and proxy into one service object"""

import functools
import logging
import time
from typing import Callable, List, Optional

import requests

from .cache import ListingCache
from .health import HealthProber, HealthTable
from .models import Channel, ListingSnapshot
from .proxy import StreamRelay, build_proxy_url
from .selector import CandidateSelector, is_live_now
from .sources import SourceResolver, build_resolver

log = logging.getLogger(__name__)


class RelayService:

    def __init__(self, config: dict, session: Optional[requests.Session] = None,
                 resolver: Optional[SourceResolver] = None,
                 live_predicate: Optional[Callable[[Channel], bool]] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.session = session or requests.Session()
        self.started = clock()
        self._clock = clock

        self.resolver = resolver or build_resolver(config, self.session)
        self.cache = ListingCache(self.resolver, ttl=config['playlist_ttl'],
                                  refresh_wait=config.get('refresh_wait', 30), clock=clock)
        self.health = HealthTable()
        self.prober = HealthProber(
            self.cache, self.health, session=self.session,
            interval=config['health_interval'],
            timeout=config['probe_timeout'],
            concurrency=config['health_concurrency'],
            headers={'User-Agent': config.get('upstream_headers', {}).get('User-Agent', 'Mozilla/5.0')},
            clock=clock
        )
        self.selector = CandidateSelector(self.health)
        self.stream_relay = StreamRelay(
            upstream_headers=config.get('upstream_headers'),
            connect_timeout=config['proxy_connect_timeout'],
            read_timeout=config['proxy_read_timeout'],
            buffer_size=config['proxy_buffer']
        )
        self.is_live_now = live_predicate or functools.partial(
            is_live_now, keywords=tuple(config.get('live_keywords') or ()))

    def listing(self) -> ListingSnapshot:
        return self.cache.get(False)

    def find_channel(self, channel_id: str) -> Optional[Channel]:
        return self.listing().find(channel_id)

    def resolve_stream(self, channel_id: str) -> Optional[dict]:
        """Title and proxied URL of the best candidate, or None for an unknown channel"""
        ch = self.find_channel(channel_id)
        if ch is None:
            return None
        best = self.selector.select(ch.candidates) or ch.url
        log.info(f"Resolving stream for {ch.name} -> {best}")
        return {'title': ch.name, 'url': build_proxy_url(self.config['base_url'], best)}

    def refresh(self) -> int:
        """Force a listing refresh and an immediate probe cycle"""
        snap = self.cache.get(True)
        self.prober.run_cycle()
        return len(snap)

    def channel_report(self) -> List[dict]:
        out = []
        for ch in self.listing().channels:
            info = self.selector.explain(ch.candidates)
            out.append({
                'id': ch.id,
                'name': ch.name,
                'group': ch.group,
                'pick': info['pick'],
                'candidates': info['candidates']
            })
        return out

    def status(self) -> dict:
        snap = self.cache.snapshot
        records = self.health.snapshot()
        return {
            'uptime': int(self._clock() - self.started),
            'playlistCachedAt': snap.fetched_at if snap else 0,
            'channels': len(snap) if snap else 0,
            'refreshes': self.cache.refreshes,
            'health': {
                'tracked': len(records),
                'reachable': sum(1 for r in records.values() if r.reachable),
                'cycles': self.prober.cycles,
                'lastCycle': self.prober.last_cycle
            },
            'ttl': self.cache.ttl,
            'interval': self.prober.interval
        }
