import copy
import socket

import pytest

from iptvrelay.config import DEFAULT_CONFIG

from .fakes import FakeClock, Upstream, serve


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg['base_url'] = "http://relay.test:9000"
    cfg['sources'] = [{'type': 'playlist', 'tag': 'main', 'url': "http://src.test/list.m3u"}]
    return cfg


@pytest.fixture
def upstream():
    server = serve(Upstream())
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it"""
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
