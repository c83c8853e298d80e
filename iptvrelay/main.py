"""Process entry point: API thread, health prober thread, proxy in the foreground"""

import logging
import sys
import threading

from .api import create_app
from .config import CONFIG_FILE, load_config
from .proxy import ProxyServer
from .service import RelayService

log = logging.getLogger(__name__)

# ============================================================================
# LOGGING
# ============================================================================

def setup_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )

# ============================================================================
# MAIN
# ============================================================================

def run_proxy(service: RelayService):
    port = service.config['proxy_port']
    with ProxyServer(("", port), service.stream_relay) as server:
        log.info(f"Proxy running on :{port}")
        server.serve_forever()


def run_api(service: RelayService):
    port = service.config['api_port']
    app = create_app(service)
    log.info(f"API running on :{port}")
    app.run(host='0.0.0.0', port=port, debug=False, threaded=True)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else CONFIG_FILE

    print("=" * 60)
    print("IPTV Relay")
    print("=" * 60)

    setup_logging()
    config = load_config(config_path)
    logging.getLogger().setLevel(getattr(logging, str(config['log_level']).upper(), logging.INFO))

    service = RelayService(config)
    snap = service.cache.get(True)
    log.info(f"Initial listing: {len(snap)} channels (BASE_URL={config['base_url']})")

    service.prober.start()
    threading.Thread(target=run_api, args=(service,), name="api", daemon=True).start()

    try:
        run_proxy(service)
    except KeyboardInterrupt:
        log.info("Stopped")
    except Exception as e:
        log.error(f"Fatal: {e}")
        sys.exit(1)
    finally:
        service.prober.stop(timeout=1)


if __name__ == "__main__":
    main()
