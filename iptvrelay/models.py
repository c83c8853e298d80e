"""Data shared between the cache, prober, selector and API"""

import base64
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlparse

# Mirrors for one channel may be packed into a single field
CANDIDATE_SEPARATORS = re.compile(r'[,|;]')
STREAM_SCHEMES = ('http', 'https')


@dataclass(frozen=True)
class RawEntry:
    """One entry as produced by a listing strategy, before normalization"""
    url: str
    name: str = ""
    group: str = ""
    logo: Optional[str] = None


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    group: str
    candidates: Tuple[str, ...]
    logo: Optional[str] = None

    @property
    def url(self) -> str:
        """Primary URL"""
        return self.candidates[0]


@dataclass(frozen=True)
class ListingSnapshot:
    """Immutable listing; replaced as a whole on refresh"""
    fetched_at: float
    channels: Tuple[Channel, ...] = field(default_factory=tuple)

    def find(self, channel_id: str) -> Optional[Channel]:
        for ch in self.channels:
            if ch.id == channel_id:
                return ch
        return None

    def __len__(self) -> int:
        return len(self.channels)


EMPTY_SNAPSHOT = ListingSnapshot(fetched_at=0.0, channels=())


@dataclass(frozen=True)
class HealthRecord:
    url: str
    reachable: bool
    status_code: int
    observed_at: float
    latency_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'reachable': self.reachable,
            'status': self.status_code,
            'observedAt': self.observed_at,
            'latencyMs': self.latency_ms
        }


def make_channel_id(tag: str, idx: int, url: str) -> str:
    """Stable id from source tag, ordinal index and primary URL"""
    encoded = base64.urlsafe_b64encode(url.encode('utf-8')).decode('ascii').rstrip('=')
    return f"{tag}_{idx}_{encoded}"


def is_stream_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        return parsed.scheme in STREAM_SCHEMES and bool(parsed.hostname)
    except ValueError:
        return False


def split_candidates(raw: Optional[str]) -> List[str]:
    """Split a raw URL field into distinct http(s) mirror URLs, keeping order"""
    if not raw:
        return []
    out = []
    for part in CANDIDATE_SEPARATORS.split(raw):
        part = part.strip()
        if part and part not in out and is_stream_url(part):
            out.append(part)
    return out
