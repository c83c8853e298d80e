"""
Configuration
Defaults, config.json loading and environment overrides
"""

import copy
import json
import logging
import os
from typing import Optional

log = logging.getLogger(__name__)

# ============================================================================
# DEFAULTS
# ============================================================================

# Server Configuration
PROXY_PORT = 9000              # Stream proxy port
API_PORT = 9005                # Admin / addon API port

# Listing Settings
PLAYLIST_TTL = 60              # Seconds a listing snapshot stays fresh
RESOLVE_TIMEOUT = 20           # Timeout for fetching a listing source
REFRESH_WAIT = 30              # Max wait on another caller's refresh

# Health Settings
HEALTH_INTERVAL = 30           # Seconds between probe cycles
HEALTH_CONCURRENCY = 8         # Probes in flight at once
PROBE_TIMEOUT = 5              # Timeout for a single probe

# Proxy Settings
PROXY_CONNECT_TIMEOUT = 10     # Upstream connect timeout
PROXY_READ_TIMEOUT = 30        # Upstream read timeout between chunks
PROXY_BUFFER = 65536           # Relay chunk size

# Paths
CONFIG_FILE = os.path.join(os.getcwd(), 'config.json')

# Fallback URL when all sources fail
FALLBACK_URL = "https://theariatv.github.io/channeldead.mp4"

DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64)"

DEFAULT_CONFIG = {
    'proxy_port': PROXY_PORT,
    'api_port': API_PORT,
    'base_url': None,
    'playlist_ttl': PLAYLIST_TTL,
    'resolve_timeout': RESOLVE_TIMEOUT,
    'refresh_wait': REFRESH_WAIT,
    'health_interval': HEALTH_INTERVAL,
    'health_concurrency': HEALTH_CONCURRENCY,
    'probe_timeout': PROBE_TIMEOUT,
    'proxy_connect_timeout': PROXY_CONNECT_TIMEOUT,
    'proxy_read_timeout': PROXY_READ_TIMEOUT,
    'proxy_buffer': PROXY_BUFFER,
    'log_level': 'INFO',
    # Tried in order; the first non-merge source with channels wins,
    # merge sources are always appended.
    'sources': [
        {
            'type': 'playlist',
            'tag': 'cricfy',
            'url': "https://cricfy.live/playlist.m3u",
            'merge': False
        }
    ],
    'fallback_channels': [
        {
            'name': "Channel Unavailable",
            'url': FALLBACK_URL,
            'group': "Other",
            'logo': None
        }
    ],
    'dedupe_merged': False,
    'upstream_headers': {
        'User-Agent': DEFAULT_USER_AGENT,
        'Referer': "https://cricfy.live/"
    },
    'live_keywords': ['live', 'match', 'vs', 'v ', 't20', 'odi', 'test', 'ipl', 'final', 'semi'],
    'addon': {
        'id': "com.iptvrelay.addon",
        'name': "IPTV Relay",
        'description': "Live channels with health checks and automatic mirror selection",
        'catalog_prefix': "relay",
        'logo': "https://i.imgur.com/9Qf2P0K.png"
    }
}


def millis(raw: str) -> float:
    return float(raw) / 1000


# Environment variable -> (config key, converter). Later names win.
ENV_OVERRIDES = {
    'PLAYLIST_TTL_MS': ('playlist_ttl', millis),
    'HEALTH_INTERVAL_MS': ('health_interval', millis),
    'PROXY_PORT': ('proxy_port', int),
    'API_PORT': ('api_port', int),
    'PLAYLIST_TTL': ('playlist_ttl', float),
    'HEALTH_INTERVAL': ('health_interval', float),
    'LOG_LEVEL': ('log_level', str),
}

# ============================================================================
# LOADING
# ============================================================================

def load_config(path: Optional[str] = None, environ: Optional[dict] = None) -> dict:
    """Build the effective configuration"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = path or CONFIG_FILE
    environ = os.environ if environ is None else environ

    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError("top level must be an object")
            config.update(loaded)
            log.info(f"Loaded config from {path}")
        except (OSError, ValueError) as e:
            log.error(f"Failed to load config: {e}")

    apply_env(config, environ)

    if not config.get('base_url'):
        config['base_url'] = f"http://localhost:{config['proxy_port']}"
    config['base_url'] = config['base_url'].rstrip('/')
    return config


def apply_env(config: dict, environ) -> None:
    """Apply environment overrides in place"""
    for name, (key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw in (None, ''):
            continue
        try:
            config[key] = convert(raw)
        except ValueError:
            log.warning(f"Ignoring invalid {name}={raw!r}")

    base_url = environ.get('BASE_URL') or environ.get('RENDER_EXTERNAL_URL')
    if base_url:
        config['base_url'] = base_url

    playlist_url = environ.get('PLAYLIST_URL')
    if playlist_url:
        # Point the first playlist source at the override, or add one
        for source in config['sources']:
            if source.get('type') == 'playlist':
                source['url'] = playlist_url
                break
        else:
            config['sources'].append({'type': 'playlist', 'tag': 'playlist', 'url': playlist_url, 'merge': True})
