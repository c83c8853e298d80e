import os
import threading
import time

import pytest
import requests

from iptvrelay.proxy import ProxyServer, StreamRelay, build_proxy_url, parse_target

from .fakes import serve


@pytest.fixture
def relay():
    return StreamRelay(upstream_headers={'Referer': "http://ref.test/"},
                       connect_timeout=2, read_timeout=2, buffer_size=4096)


@pytest.fixture
def proxy(relay):
    server = serve(ProxyServer(("127.0.0.1", 0), relay))
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def test_parse_target_decodes_once():
    inner = "http://cdn.test/a%20b.m3u8?x=1"
    assert parse_target(build_proxy_url("http://relay", inner)[len("http://relay"):]) == inner
    assert parse_target("/proxy/http%3A%2F%2Fcdn.test%2Flive.ts") == "http://cdn.test/live.ts"


@pytest.mark.parametrize("path", ["/proxy/", "/proxy/%20", "/proxy/not-a-url", "/proxy/ftp%3A%2F%2Fhost%2Fx", "/proxy/http%3A%2F%2F"])
def test_parse_target_rejects_bad_input(path):
    with pytest.raises(ValueError):
        parse_target(path)


def test_relays_status_headers_and_exact_bytes(proxy, upstream):
    body = os.urandom(300000)
    upstream.routes["/live/video.ts"] = (200, {'Content-Type': "video/MP2T", 'X-Upstream': "yes"}, body)

    r = requests.get(build_proxy_url(proxy, upstream.url("/live/video.ts")),
                     headers={'User-Agent': "TestPlayer/1.0"}, timeout=10)

    assert r.status_code == 200
    assert r.content == body
    assert r.headers['Content-Type'] == "video/MP2T"
    assert r.headers['X-Upstream'] == "yes"
    path, headers = upstream.seen[0]
    assert path == "/live/video.ts"
    assert headers['User-Agent'] == "TestPlayer/1.0"
    assert headers['Referer'] == "http://ref.test/"


def test_head_request_has_no_body(proxy, upstream):
    upstream.routes["/clip.mp4"] = (200, {'Content-Type': "video/mp4"}, b"x" * 10)
    r = requests.head(build_proxy_url(proxy, upstream.url("/clip.mp4")), timeout=10)
    assert r.status_code == 200
    assert r.content == b""


def test_unreachable_upstream_is_bad_gateway(proxy, closed_port):
    start = time.monotonic()
    r = requests.get(build_proxy_url(proxy, f"http://127.0.0.1:{closed_port}/live.ts"), timeout=10)
    assert r.status_code == 502
    assert time.monotonic() - start < 5


def test_error_status_upstream_is_bad_gateway(proxy, upstream):
    r = requests.get(build_proxy_url(proxy, upstream.url("/missing.ts")), timeout=10)
    assert r.status_code == 502


@pytest.mark.parametrize("path, status", [
    ("/proxy/", 400),
    ("/proxy/garbage", 400),
    ("/somewhere/else", 404),
])
def test_bad_requests(proxy, path, status):
    assert requests.get(proxy + path, timeout=10).status_code == status


def test_client_disconnect_releases_upstream(proxy, upstream):
    stopped = threading.Event()

    def endless(handler):
        handler.send_response(200)
        handler.send_header('Content-Type', "video/MP2T")
        handler.end_headers()
        chunk = b"\x47" * 65536
        try:
            for _ in range(10000):
                handler.wfile.write(chunk)
        except OSError:
            stopped.set()

    upstream.routes["/endless.ts"] = endless

    r = requests.get(build_proxy_url(proxy, upstream.url("/endless.ts")), stream=True, timeout=10)
    assert r.status_code == 200
    assert r.raw.read(1024)
    r.close()

    assert stopped.wait(10)


def test_truncated_upstream_is_not_reported_as_complete(proxy, upstream):
    def truncated(handler):
        handler.protocol_version = "HTTP/1.1"
        handler.close_connection = True
        handler.send_response(200)
        handler.send_header('Content-Type', "video/MP2T")
        handler.send_header('Transfer-Encoding', "chunked")
        handler.end_headers()
        handler.wfile.write(b"400\r\n" + b"\x47" * 1024 + b"\r\n")

    upstream.routes["/broken.ts"] = truncated

    with pytest.raises(requests.exceptions.ChunkedEncodingError):
        requests.get(build_proxy_url(proxy, upstream.url("/broken.ts")), timeout=10)


def test_unsized_upstream_is_relayed_chunked(proxy, upstream):
    body = os.urandom(100000)

    def unsized(handler):
        handler.send_response(200)
        handler.send_header('Content-Type', "video/MP2T")
        handler.end_headers()
        handler.wfile.write(body)

    upstream.routes["/unsized.ts"] = unsized

    r = requests.get(build_proxy_url(proxy, upstream.url("/unsized.ts")), timeout=10)
    assert r.status_code == 200
    assert r.headers['Transfer-Encoding'] == "chunked"
    assert r.content == body


def test_client_accept_encoding_is_forwarded(proxy, upstream):
    upstream.routes["/plain.ts"] = (200, {'Content-Type': "video/MP2T"}, b"plain")
    r = requests.get(build_proxy_url(proxy, upstream.url("/plain.ts")),
                     headers={'Accept-Encoding': "identity"}, timeout=10)
    assert r.content == b"plain"
    path, headers = upstream.seen[0]
    assert headers['Accept-Encoding'] == "identity"


def test_accept_encoding_defaults_to_identity(relay):
    assert relay.request_headers({})['Accept-Encoding'] == "identity"
    assert relay.request_headers(None)['Accept-Encoding'] == "identity"
    assert relay.request_headers({'Accept-Encoding': "gzip"})['Accept-Encoding'] == "gzip"
