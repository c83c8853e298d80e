"""
REST API
Admin endpoints and the TV addon contract (manifest, catalog, meta, stream)
"""

import logging
import re

from flask import Flask, jsonify

from . import __version__
from .models import Channel
from .service import RelayService

log = logging.getLogger(__name__)

WHITESPACE = re.compile(r'\s+')


def catalog_id(prefix: str, group: str) -> str:
    slug = WHITESPACE.sub('_', group).lower()
    return f"{prefix}_{slug}"


def to_meta(ch: Channel, poster: str) -> dict:
    return {
        'id': ch.id,
        'type': 'tv',
        'name': ch.name,
        'poster': ch.logo or poster,
        'posterShape': 'landscape',
        'description': ch.group
    }


def create_app(service: RelayService) -> Flask:
    app = Flask(__name__)
    app.json.sort_keys = False
    logging.getLogger('werkzeug').setLevel(logging.ERROR)

    addon = service.config['addon']
    prefix = addon['catalog_prefix']
    poster = addon.get('logo')

    def build_manifest() -> dict:
        channels = service.listing().channels
        groups = sorted({ch.group for ch in channels})
        catalogs = [{'type': 'tv', 'id': f"{prefix}_all", 'name': "All Channels"}]
        if any(service.is_live_now(ch) for ch in channels):
            catalogs.append({'type': 'tv', 'id': f"{prefix}_live_now", 'name': "LIVE NOW"})
        catalogs.extend({'type': 'tv', 'id': catalog_id(prefix, g), 'name': g} for g in groups)
        return {
            'id': addon['id'],
            'version': __version__,
            'name': addon['name'],
            'description': addon.get('description', ''),
            'logo': poster,
            'types': ['tv'],
            'catalogs': catalogs,
            'resources': ['catalog', 'meta', 'stream'],
            'idPrefixes': []
        }

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    @app.route('/')
    def index():
        return jsonify({
            'status': 'ok',
            'name': addon['name'],
            'version': __version__,
            'manifest': f"{service.config['base_url']}/manifest.json"
        })

    @app.route('/health')
    def health():
        snap = service.cache.snapshot
        return jsonify({
            'ok': True,
            'playlistCachedAt': snap.fetched_at if snap else 0,
            'channels': len(snap) if snap else 0
        })

    @app.route('/api/status')
    def api_status():
        return jsonify(service.status())

    @app.route('/api/channels')
    def api_channels():
        report = service.channel_report()
        return jsonify({'channels': report, 'total': len(report)})

    @app.route('/refresh', methods=['POST'])
    def refresh():
        try:
            items = service.refresh()
        except Exception as e:
            log.error(f"Manual refresh failed: {e}")
            return jsonify({'refreshed': False, 'error': str(e) or type(e).__name__}), 500
        log.info(f"Manual refresh: {items} channels")
        return jsonify({'refreshed': True, 'items': items})

    # ------------------------------------------------------------------
    # Addon
    # ------------------------------------------------------------------

    @app.route('/manifest.json')
    def manifest():
        return jsonify(build_manifest())

    @app.route('/catalog/<content_type>/<cat_id>.json')
    def catalog(content_type, cat_id):
        channels = service.listing().channels
        if cat_id == f"{prefix}_all":
            selected = channels
        elif cat_id == f"{prefix}_live_now":
            selected = [ch for ch in channels if service.is_live_now(ch)]
        else:
            selected = [ch for ch in channels if catalog_id(prefix, ch.group) == cat_id]
        return jsonify({'metas': [to_meta(ch, poster) for ch in selected]})

    @app.route('/meta/<content_type>/<channel_id>.json')
    def meta(content_type, channel_id):
        ch = service.find_channel(channel_id)
        if ch is None:
            return jsonify({'meta': {}})
        m = to_meta(ch, poster)
        m['background'] = ch.logo
        return jsonify({'meta': m})

    @app.route('/stream/<content_type>/<channel_id>.json')
    def stream(content_type, channel_id):
        resolved = service.resolve_stream(channel_id)
        return jsonify({'streams': [resolved] if resolved else []})

    @app.after_request
    def allow_cors(response):
        # TV-app clients fetch the addon cross-origin
        response.headers['Access-Control-Allow-Origin'] = '*'
        return response

    return app
