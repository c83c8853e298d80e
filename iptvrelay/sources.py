"""
Source Resolver
Listing strategies (scrape, playlist, static) and the priority/merge rule
"""

import logging
import re
from typing import Iterable, List, Optional

import requests

from .errors import SourceUnavailable
from .models import Channel, RawEntry, make_channel_id, split_candidates
from .playlist import parse_playlist

log = logging.getLogger(__name__)

DEFAULT_SCRAPE_PATTERN = r'''https?://[^\s"'<>\\]+?\.m3u8(?:\?[^\s"'<>\\]*)?'''
DEFAULT_GROUP = "Other"

# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize(entries: Iterable[RawEntry], tag: str, split: bool = True) -> List[Channel]:
    """Turn raw entries into channels, dropping entries without a URL"""
    channels = []
    for idx, entry in enumerate(entries):
        if split:
            candidates = split_candidates(entry.url)
        else:
            candidates = [entry.url.strip()] if entry.url and entry.url.strip() else []
        if not candidates:
            log.debug(f"[{tag}] dropping entry {idx} without a usable URL")
            continue

        channels.append(Channel(
            id=make_channel_id(tag, idx, candidates[0]),
            name=(entry.name or "").strip() or f"Channel {idx + 1}",
            group=(entry.group or "").strip() or DEFAULT_GROUP,
            candidates=tuple(candidates),
            logo=entry.logo or None
        ))
    return channels

# ============================================================================
# STRATEGIES
# ============================================================================

class Strategy:
    """A listing source. fetch() raises SourceUnavailable on failure."""

    kind = "base"

    def __init__(self, tag: str, merge: bool = False):
        self.tag = tag
        self.merge = merge

    def fetch(self) -> List[RawEntry]:
        raise NotImplementedError

    def channels(self) -> List[Channel]:
        return normalize(self.fetch(), self.tag)

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.tag}{' merge' if self.merge else ''}>"


class HttpStrategy(Strategy):

    def __init__(self, tag: str, url: str, session: Optional[requests.Session] = None,
                 timeout: float = 20, headers: Optional[dict] = None, merge: bool = False):
        super().__init__(tag, merge)
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = headers or {}

    def download(self) -> str:
        if not self.url:
            raise SourceUnavailable(self.tag, "no URL configured")
        try:
            r = self.session.get(self.url, headers=self.headers, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise SourceUnavailable(self.tag, str(e)) from e
        if 'charset' not in r.headers.get('Content-Type', '').lower():
            r.encoding = 'utf-8'
        return r.text


class PlaylistStrategy(HttpStrategy):
    """User-supplied M3U (or name,url text) playlist"""

    kind = "playlist"

    def fetch(self) -> List[RawEntry]:
        return parse_playlist(self.download())


class ScrapeStrategy(HttpStrategy):
    """Pull stream URLs out of a web page by pattern matching"""

    kind = "scrape"

    def __init__(self, tag: str, url: str, pattern: Optional[str] = None, **kwargs):
        super().__init__(tag, url, **kwargs)
        self.pattern = re.compile(pattern or DEFAULT_SCRAPE_PATTERN)

    def fetch(self) -> List[RawEntry]:
        # JSON-escaped URLs in inline scripts
        page = self.download().replace("\\/", "/")
        seen = []
        for match in self.pattern.finditer(page):
            url = match.group(0)
            if url not in seen:
                seen.append(url)
        return [RawEntry(url=u) for u in seen]


class StaticStrategy(Strategy):
    """Fixed list of channels from configuration"""

    kind = "static"

    def __init__(self, tag: str, entries: Iterable[dict], merge: bool = False):
        super().__init__(tag, merge)
        self.entries = [
            RawEntry(url=e.get('url') or "", name=e.get('name') or "",
                     group=e.get('group') or "", logo=e.get('logo'))
            for e in entries
        ]

    def fetch(self) -> List[RawEntry]:
        return list(self.entries)

    def verbatim(self) -> List[Channel]:
        """Channels with exactly the configured URL as sole candidate"""
        return normalize(self.entries, self.tag, split=False)

# ============================================================================
# RESOLVER
# ============================================================================

class SourceResolver:
    """
    Tries strategies in priority order. The first non-merge strategy with
    channels wins; merge strategies are always appended after it. If nothing
    produced a channel the static fallback list is returned as is.
    """

    def __init__(self, strategies: List[Strategy], fallback: Optional[StaticStrategy] = None,
                 dedupe_merged: bool = False):
        self.strategies = list(strategies)
        self.fallback = fallback
        self.dedupe_merged = dedupe_merged

    def _try(self, strategy: Strategy) -> List[Channel]:
        try:
            channels = strategy.channels()
        except SourceUnavailable as e:
            log.warning(f"Source unavailable: {e}")
            return []
        except Exception as e:
            log.error(f"Source {strategy.tag} failed: {type(e).__name__}: {e}")
            return []
        log.info(f"Source {strategy.tag} ({strategy.kind}) yielded {len(channels)} channels")
        return channels

    def resolve(self) -> List[Channel]:
        primary: List[Channel] = []
        merged: List[Channel] = []

        for strategy in self.strategies:
            if strategy.merge:
                merged.extend(self._try(strategy))
            elif not primary:
                primary = self._try(strategy)

        channels = self._merge(primary, merged)
        if channels:
            return channels

        if self.fallback is not None:
            log.warning("All sources empty, using static fallback list")
            return self.fallback.verbatim()
        return []

    def _merge(self, primary: List[Channel], merged: List[Channel]) -> List[Channel]:
        if not self.dedupe_merged:
            return primary + merged

        out = list(primary)
        seen = {u for ch in primary for u in ch.candidates}
        for ch in merged:
            if ch.url in seen:
                log.debug(f"Dropping duplicate {ch.name} ({ch.url})")
                continue
            seen.update(ch.candidates)
            out.append(ch)
        return out


def build_resolver(config: dict, session: Optional[requests.Session] = None) -> SourceResolver:
    """Resolver from the 'sources' / 'fallback_channels' config sections"""
    session = session or requests.Session()
    timeout = config.get('resolve_timeout', 20)
    headers = {'User-Agent': config.get('upstream_headers', {}).get('User-Agent', 'Mozilla/5.0')}

    strategies: List[Strategy] = []
    for idx, src in enumerate(config.get('sources', [])):
        kind = src.get('type', 'playlist')
        tag = src.get('tag') or f"{kind}{idx}"
        merge = bool(src.get('merge', False))
        if kind == 'playlist':
            strategies.append(PlaylistStrategy(tag, src.get('url', ''), session=session,
                                               timeout=timeout, headers=headers, merge=merge))
        elif kind == 'scrape':
            strategies.append(ScrapeStrategy(tag, src.get('url', ''), pattern=src.get('pattern'),
                                             session=session, timeout=timeout, headers=headers, merge=merge))
        elif kind == 'static':
            strategies.append(StaticStrategy(tag, src.get('channels', []), merge=merge))
        else:
            log.error(f"Unknown source type {kind!r} for {tag}, skipping")

    fallback = None
    if config.get('fallback_channels'):
        fallback = StaticStrategy('fallback', config['fallback_channels'])

    log.info(f"Sources: {strategies}")
    return SourceResolver(strategies, fallback=fallback, dedupe_merged=config.get('dedupe_merged', False))
