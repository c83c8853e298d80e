"""Playlist parsing (M3U and plain "name,url" lists) into raw entries"""

import logging
import re
from typing import List

from .models import RawEntry

log = logging.getLogger(__name__)

EXTINF_NAME_RE = re.compile(r",\s*(.*)$")
ATTR_RE = re.compile(r'(\w[\w\-]*)="([^"]*)"')
GENRE_MARKER = "#genre#"


def is_m3u(text: str) -> bool:
    head = [l.strip() for l in text.splitlines()[:15]]
    return any(l.startswith("#EXTM3U") or l.startswith("#EXTINF") for l in head)


def parse_extinf(extinf: str) -> dict:
    """Name plus the attributes we care about from an #EXTINF line"""
    attrs = dict(ATTR_RE.findall(extinf))
    # Attribute values may contain commas, drop them before looking for the title
    m = EXTINF_NAME_RE.search(ATTR_RE.sub("", extinf))
    name = (m.group(1).strip() if m else "") or attrs.get("tvg-name", "").strip()
    return {
        "name": name,
        "group": attrs.get("group-title", "").strip(),
        "logo": attrs.get("tvg-logo", "").strip() or None,
    }


def parse_m3u(text: str) -> List[RawEntry]:
    lines = [l.strip() for l in text.splitlines() if l.strip()]
    out: List[RawEntry] = []
    i = 0
    while i < len(lines):
        if not lines[i].startswith("#EXTINF"):
            i += 1
            continue

        meta = parse_extinf(lines[i])
        # #EXTVLCOPT / #EXTGRP lines may sit between EXTINF and the URL
        j = i + 1
        while j < len(lines) and lines[j].startswith("#") and not lines[j].startswith("#EXTINF"):
            if lines[j].startswith("#EXTGRP:") and not meta["group"]:
                meta["group"] = lines[j].split(":", 1)[1].strip()
            j += 1

        url = ""
        if j < len(lines) and not lines[j].startswith("#"):
            url = lines[j]
            j += 1
        out.append(RawEntry(url=url, name=meta["name"], group=meta["group"], logo=meta["logo"]))
        i = j
    return out


def parse_txt(text: str) -> List[RawEntry]:
    """Lines of "name,url" grouped under "Group,#genre#" headers"""
    out: List[RawEntry] = []
    group = ""
    for line in text.splitlines():
        line = line.strip()
        if not line or "," not in line:
            continue
        if GENRE_MARKER in line:
            group = line.split(",")[0].strip()
            continue
        name, url = line.split(",", 1)
        # TXT lists pack mirrors with '#'
        out.append(RawEntry(url=url.strip().replace("#", "|"), name=name.strip(), group=group))
    return out


def parse_playlist(text: str) -> List[RawEntry]:
    if is_m3u(text):
        return parse_m3u(text)
    entries = parse_txt(text)
    if not entries:
        log.warning("Playlist is neither M3U nor a name,url list")
    return entries
