"""Tests for the proxy server: request head handling and end-to-end forwarding."""

import asyncio
import logging

import pytest
import pytest_asyncio

from permproxy import directives
from permproxy.backends.registry import default_factories
from permproxy.config import Config
from permproxy.core import ProxyError, ProxyServer, _parse_request_line, _rebuild_request_head
from permproxy.request import basic_credentials
from permproxy.tls import common_name

CONFIG = """
realm Files
basic {
    user admin secret
    rw /
    public
    ro /static/
}
"""


def test_parse_request_line():
    assert _parse_request_line(b"get /a HTTP/1.1") == ("GET", "/a", "HTTP/1.1")
    with pytest.raises(ProxyError) as info:
        _parse_request_line(b"GET /a")
    assert info.value.status == 400


def test_rebuild_request_head():
    head = _rebuild_request_head(
        b"GET /a HTTP/1.1",
        {"host": "x", "proxy-authorization": "Basic abc", "connection": "keep-alive", "x-auth-user": "bob"},
    )
    assert head == b"GET /a HTTP/1.1\r\nhost: x\r\nx-auth-user: bob\r\nconnection: close\r\n\r\n"


def test_rebuild_request_head_keeps_websocket_upgrade():
    head = _rebuild_request_head(b"GET /ws HTTP/1.1", {"upgrade": "websocket", "connection": "Upgrade"})
    assert b"upgrade: websocket\r\n" in head
    assert b"connection: Upgrade\r\n" in head
    assert b"connection: close" not in head


def test_common_name():
    cert = {"subject": ((("countryName", "DE"),), (("commonName", "alice"),))}
    assert common_name(cert) == "alice"
    assert common_name({"subject": ()}) is None
    assert common_name(None) is None


async def _upstream(reader, writer):
    """Answers every request with the head it received."""
    head = b""
    while True:
        line = await reader.readline()
        if not line or line == b"\r\n":
            break
        head += line
    writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: %d\r\nConnection: close\r\n\r\n" % len(head) + head)
    await writer.drain()
    writer.close()


async def _roundtrip(port, raw):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(raw)
    await writer.drain()
    data = await asyncio.wait_for(reader.read(), 5)
    writer.close()
    return data


@pytest.fixture
def restore_logging():
    logger = logging.getLogger("permproxy")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for h in logger.handlers[:]:
        if h not in handlers:
            logger.removeHandler(h)
            h.close()
    logger.propagate, logger.level = propagate, level


@pytest_asyncio.fixture
async def proxy(tmp_path, restore_logging):
    upstream = await asyncio.start_server(_upstream, "127.0.0.1", 0)
    upstream_port = upstream.sockets[0].getsockname()[1]
    cfg = Config(
        listen_host="127.0.0.1",
        listen_port=0,
        upstream_host="127.0.0.1",
        upstream_port=upstream_port,
        permissions_path="",
        use_tls=False,
        tls_cert="",
        tls_key="",
        tls_client_ca="",
        log_path=str(tmp_path / "access.log"),
        debug=False,
    )
    server = ProxyServer(cfg, directives.loads(CONFIG, default_factories()))
    listener = await asyncio.start_server(server._handle_client, "127.0.0.1", 0)
    yield listener.sockets[0].getsockname()[1], tmp_path
    listener.close()
    upstream.close()
    await listener.wait_closed()
    await upstream.wait_closed()


@pytest.mark.asyncio
async def test_public_request_is_forwarded(proxy):
    port, _ = proxy
    data = await _roundtrip(port, b"GET /static/app.js HTTP/1.1\r\nHost: x\r\nX-Auth-User: admin\r\n\r\n")
    assert data.startswith(b"HTTP/1.1 200 OK")
    assert b"x-auth-permit: basic:public" in data
    assert b"x-auth-user" not in data


@pytest.mark.asyncio
async def test_authenticated_request_carries_identity(proxy):
    port, _ = proxy
    auth = basic_credentials("admin", "secret").encode()
    data = await _roundtrip(port, b"PUT /data/x HTTP/1.1\r\nHost: x\r\nAuthorization: Basic " + auth + b"\r\n\r\n")
    assert data.startswith(b"HTTP/1.1 200 OK")
    assert b"x-auth-user: admin" in data
    assert b"x-auth-source: basic" in data


@pytest.mark.asyncio
async def test_anonymous_request_is_challenged(proxy):
    port, _ = proxy
    data = await _roundtrip(port, b"PUT /data/x HTTP/1.1\r\nHost: x\r\n\r\n")
    assert data.startswith(b"HTTP/1.1 401 Unauthorized")
    assert b'WWW-Authenticate: Basic realm="Files"' in data


@pytest.mark.asyncio
async def test_malformed_request(proxy):
    port, _ = proxy
    data = await _roundtrip(port, b"NONSENSE\r\n\r\n")
    assert data.startswith(b"HTTP/1.1 400")


@pytest.mark.asyncio
async def test_access_log_is_written(proxy):
    port, tmp_path = proxy
    await _roundtrip(port, b"GET /static/a HTTP/1.1\r\nHost: x\r\n\r\n")
    for h in logging.getLogger("permproxy").handlers:
        h.flush()
    lines = (tmp_path / "access.jsonl").read_text(encoding="utf-8").splitlines()
    assert any('"event":"grant"' in line for line in lines)
