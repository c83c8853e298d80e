"""Candidate selection and the live-now heuristic"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .health import HealthTable
from .models import Channel, HealthRecord

log = logging.getLogger(__name__)

LIVE_KEYWORDS = ('live', 'match', 'vs', 'v ', 't20', 'odi', 'test', 'ipl', 'final', 'semi')


def score(rec: Optional[HealthRecord]) -> Tuple[bool, float]:
    """Higher is better: reachable first, then most recently checked. Unknown scores lowest."""
    if rec is None:
        return (False, 0.0)
    return (rec.reachable, rec.observed_at)


class CandidateSelector:

    def __init__(self, table: HealthTable):
        self.table = table

    def ranked(self, candidates: Sequence[str]) -> List[Tuple[str, Optional[HealthRecord]]]:
        """Candidates paired with health, best first (stable for ties)"""
        pairs = [(url, self.table.get(url)) for url in candidates]
        return sorted(pairs, key=lambda p: score(p[1]), reverse=True)

    def select(self, candidates: Sequence[str]) -> Optional[str]:
        if not candidates:
            return None
        ranked = self.ranked(candidates)
        url, rec = ranked[0]
        if rec is not None and rec.reachable:
            return url
        # Nothing reachable: try the source's own first choice
        log.debug(f"No reachable candidate among {len(candidates)}, using first")
        return candidates[0]

    def explain(self, candidates: Sequence[str]) -> dict:
        pick = self.select(candidates)
        return {
            'pick': pick,
            'candidates': [
                {'url': url, 'selected': url == pick, 'health': rec.to_dict() if rec else None}
                for url, rec in ((u, self.table.get(u)) for u in candidates)
            ]
        }


def is_live_now(ch: Channel, keywords: Iterable[str] = LIVE_KEYWORDS) -> bool:
    """
    Best-effort guess whether a channel is airing a live event, by keyword
    search over name, group and URL. Approximate by nature.
    """
    if not ch or not ch.name:
        return False
    text = f"{ch.name} {ch.group} {ch.url}".lower()
    return any(k in text for k in keywords)
