"""
Streaming Proxy
Byte-for-byte relay of an upstream stream to the requesting client
"""

import http.server
import logging
import socketserver
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import requests

from .errors import UpstreamProxyFailure

log = logging.getLogger(__name__)

PROXY_PREFIX = "/proxy/"

# Client headers forwarded upstream
FORWARD_HEADERS = ('User-Agent', 'Referer', 'Range', 'Accept', 'Accept-Encoding')

HOP_BY_HOP = {
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailers', 'transfer-encoding', 'upgrade'
}

# Written by the handler itself
OWN_HEADERS = {'server', 'date'}

NO_BODY_STATUS = (204, 304)
LAST_CHUNK = b"0\r\n\r\n"

CLIENT_TIMEOUT = 60            # Socket timeout towards the client


def build_proxy_url(base_url: str, target: str) -> str:
    """Public proxy URL embedding the target"""
    return f"{base_url.rstrip('/')}{PROXY_PREFIX}{quote(target, safe='')}"


def frame(chunk: bytes) -> bytes:
    return b"%x\r\n%s\r\n" % (len(chunk), chunk)


def parse_target(path: str) -> str:
    """Decode the target URL embedded in a proxy path (exactly once)"""
    if not path.startswith(PROXY_PREFIX):
        raise ValueError("not a proxy path")
    target = unquote(path[len(PROXY_PREFIX):]).strip()
    if not target:
        raise ValueError("empty target")
    parsed = urlparse(target)
    if parsed.scheme not in ('http', 'https') or not parsed.hostname:
        raise ValueError("malformed target")
    return target


class StreamRelay:
    """Opens upstream connections for the proxy handler"""

    def __init__(self, session: Optional[requests.Session] = None, upstream_headers: Optional[dict] = None,
                 connect_timeout: float = 10, read_timeout: float = 30, buffer_size: int = 65536,
                 client_timeout: float = CLIENT_TIMEOUT):
        self.session = session or requests.Session()
        self.upstream_headers = {k: v for k, v in (upstream_headers or {}).items() if v}
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.buffer_size = buffer_size
        self.client_timeout = client_timeout

    def request_headers(self, client_headers) -> dict:
        headers = {}
        for name in FORWARD_HEADERS:
            value = client_headers.get(name) if client_headers is not None else None
            if value:
                headers[name] = value
        # Body is relayed undecoded
        headers.setdefault('Accept-Encoding', 'identity')
        # Configured identity wins over the client's
        headers.update(self.upstream_headers)
        return headers

    def open(self, method: str, url: str, client_headers=None) -> requests.Response:
        """Connect upstream; raises UpstreamProxyFailure on error status or no connection"""
        try:
            r = self.session.request(method, url, headers=self.request_headers(client_headers),
                                     stream=True, allow_redirects=True,
                                     timeout=(self.connect_timeout, self.read_timeout))
        except requests.RequestException as e:
            raise UpstreamProxyFailure(url, f"{type(e).__name__}: {e}") from e

        if r.status_code >= 400:
            r.close()
            raise UpstreamProxyFailure(url, f"upstream status {r.status_code}", r.status_code)
        return r

# ============================================================================
# HTTP PROXY
# ============================================================================

class ProxyHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def setup(self):
        self.timeout = self.server.relay.client_timeout
        super().setup()

    def log_message(self, format, *args):
        log.debug(f"{self.address_string()} - {format % args}")

    def do_GET(self):
        self.relay_stream('GET')

    def do_HEAD(self):
        self.relay_stream('HEAD')

    def relay_stream(self, method: str):
        self.close_connection = True
        relay: StreamRelay = self.server.relay

        if not self.path.startswith(PROXY_PREFIX):
            self.send_error(404)
            return
        try:
            target = parse_target(self.path)
        except ValueError as e:
            self.send_error(400, f"Bad target: {e}")
            return

        try:
            upstream = relay.open(method, target, self.headers)
        except UpstreamProxyFailure as e:
            log.warning(f"Proxy error: {e}")
            self.send_error(502, "Bad gateway")
            return

        # Without a length only chunk framing tells the client the body is complete
        chunked = (method == 'GET' and self.request_version == 'HTTP/1.1'
                   and 'Content-Length' not in upstream.headers
                   and upstream.status_code not in NO_BODY_STATUS)
        sent = 0
        try:
            self.send_response(upstream.status_code)
            for name, value in upstream.headers.items():
                if name.lower() not in HOP_BY_HOP and name.lower() not in OWN_HEADERS:
                    self.send_header(name, value)
            if chunked:
                self.send_header('Transfer-Encoding', 'chunked')
            self.send_header('Connection', 'close')
            self.end_headers()

            if method == 'HEAD':
                return

            for chunk in upstream.raw.stream(relay.buffer_size, decode_content=False):
                if not chunk:
                    continue
                try:
                    self.wfile.write(frame(chunk) if chunked else chunk)
                except OSError:
                    log.info(f"Client disconnected from {target} after {sent} bytes")
                    return
                sent += len(chunk)

            if chunked:
                try:
                    self.wfile.write(LAST_CHUNK)
                except OSError:
                    log.info(f"Client disconnected from {target} at end of stream")
        except Exception as e:
            # Status already sent; an unterminated body is the only signal left
            log.warning(f"Upstream broke mid-stream {target} after {sent} bytes: {type(e).__name__}: {e}")
        finally:
            upstream.close()


class ProxyServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address, relay: StreamRelay):
        self.relay = relay
        super().__init__(address, ProxyHandler)
