"""
permproxy.core
~~~~~~~~~~~~~~
Non-blocking authorizing reverse proxy: every request is run through the
resolver and either forwarded to the upstream or answered with 403, a
Basic-auth challenge, or a login redirect.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

from . import directives
from .backends.registry import default_factories
from .config import Config
from .logger import AccessLogger
from .request import Request
from .resolver import Resolver
from .tls import peer_common_name, server_ssl_context

CRLF = b"\r\n"
BUFFER = 65_536

log = logging.getLogger("permproxy.core")


def run_proxy(config: Config) -> None:
    proxy = ProxyServer(config)
    try:
        asyncio.run(proxy.serve_forever())
    except KeyboardInterrupt:
        print("\n▸ Proxy shut down.")


class ProxyServer:
    def __init__(self, cfg: Config, resolver: Optional[Resolver] = None) -> None:
        self.cfg = cfg
        self.logger = AccessLogger(cfg.log_path, debug=cfg.debug)
        if resolver is None:
            resolver = directives.load(cfg.permissions_path, default_factories())
        resolver.access = self.logger
        self.resolver = resolver

    async def serve_forever(self) -> None:
        ssl_ctx = (
            server_ssl_context(self.cfg.tls_cert, self.cfg.tls_key, self.cfg.tls_client_ca)
            if self.cfg.use_tls
            else None
        )
        await self.resolver.start()
        try:
            server = await asyncio.start_server(
                self._handle_client,
                host=self.cfg.listen_host,
                port=self.cfg.listen_port,
                ssl=ssl_ctx,
            )

            bind_str = ", ".join(str(s.getsockname()) for s in server.sockets)
            print(
                f"▸ Proxy listening on {bind_str} -> "
                f"{self.cfg.upstream_host}:{self.cfg.upstream_port}  (TLS={self.cfg.use_tls})"
            )

            async with server:
                await server.serve_forever()
        finally:
            await self.resolver.close()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        start_ts = time.time()
        peer = writer.get_extra_info("peername")
        peer_ip = peer[0] if peer else ""
        method = target = "-"
        username = ""
        status = 500

        try:
            req_line, headers = await _read_request_head(reader)
            method, target, _ = _parse_request_line(req_line)
            self.logger.start(peer_ip, method, target, headers.get("user-agent", ""))

            request = Request(
                method=method,
                path=target,
                headers=headers,
                remote_addr=peer_ip,
                host=headers.get("host", ""),
                tls=self.cfg.use_tls,
                peer_common_name=peer_common_name(writer) if self.cfg.use_tls else None,
            )
            decision = await self.resolver.resolve(request)
            username = decision.username
            status = decision.status

            if decision.allowed:
                upstream_headers = self.resolver.forwarded_headers(request, decision)
                await self._forward(reader, writer, req_line, upstream_headers)
            elif decision.challenge is not None:
                await _send_simple_response(writer, status, b"", decision.challenge.headers)
            else:
                await _send_simple_response(writer, status, decision.reason.encode())

        except ProxyError as e:
            status = e.status
            try:
                await _send_simple_response(writer, e.status, e.msg.encode())
            except ConnectionError:
                pass
        except Exception:
            status = 500
            log.exception({"event": "error", "method": method, "url": target})
            try:
                await _send_simple_response(writer, 500, b"Internal Server Error")
            except ConnectionError:
                pass
        finally:
            self.logger.end(username, method, target, status, int((time.time() - start_ts) * 1000))
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _forward(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        req_line: bytes,
        headers: Dict[str, str],
    ) -> None:
        try:
            remote_reader, remote_writer = await asyncio.open_connection(
                self.cfg.upstream_host, self.cfg.upstream_port
            )
        except OSError as e:
            raise ProxyError(502, f"Upstream connect failed: {e}") from e

        remote_writer.write(_rebuild_request_head(req_line, headers))
        await remote_writer.drain()
        await _pipe_bidirectional(client_reader, client_writer, remote_reader, remote_writer)


class ProxyError(Exception):
    def __init__(self, status: int, msg: str):
        self.status = status
        self.msg = msg
        super().__init__(f"{status} {msg}")


async def _read_request_head(reader: asyncio.StreamReader) -> Tuple[bytes, Dict[str, str]]:
    head = b""
    while True:
        line = await reader.readline()
        if not line:
            raise ProxyError(400, "Bad Request: EOF before headers complete")
        head += line
        if line == CRLF:
            break

    lines = head.split(CRLF)[:-1]
    if not lines or not lines[0]:
        raise ProxyError(400, "Bad Request: empty head")

    req_line = lines[0]
    hdrs: Dict[str, str] = {}
    for raw in lines[1:]:
        if b":" in raw:
            k, v = raw.split(b":", 1)
            hdrs[k.decode("latin-1").strip().lower()] = v.decode("latin-1").strip()
    return req_line, hdrs


def _parse_request_line(line: bytes) -> Tuple[str, str, str]:
    try:
        method, target, version = line.decode("latin-1").strip().split()
    except ValueError:
        raise ProxyError(400, "Bad Request: malformed request-line") from None
    return method.upper(), target, version


_HOP_BY_HOP = {
    "proxy-authorization",
    "proxy-connection",
    "keep-alive",
    "te",
    "trailer",
}


def _rebuild_request_head(req_line: bytes, headers: Dict[str, str]) -> bytes:
    # One authorization decision per connection: the upstream must not
    # keep it open for further requests, websocket upgrades aside.
    websocket = headers.get("upgrade", "").lower() == "websocket"
    head = bytearray(req_line.rstrip() + CRLF)
    for k, v in headers.items():
        if k in _HOP_BY_HOP or (k == "connection" and not websocket):
            continue
        head.extend(f"{k}: {v}".encode("latin-1") + CRLF)
    if not websocket:
        head.extend(b"connection: close" + CRLF)
    head.extend(CRLF)
    return bytes(head)


_REASONS = {
    200: "OK",
    302: "Found",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    500: "Internal Server Error",
    502: "Bad Gateway",
}


async def _send_simple_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
) -> None:
    head = f"HTTP/1.1 {status} {_REASONS.get(status, 'Error')}\r\n"
    for k, v in (headers or {}).items():
        head += f"{k}: {v}\r\n"
    head += f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n"
    writer.write(head.encode("latin-1") + body)
    await writer.drain()


async def _pipe_stream(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> None:
    try:
        while not src.at_eof():
            chunk = await src.read(BUFFER)
            if not chunk:
                break
            dst.write(chunk)
            await dst.drain()
    except ConnectionError:
        pass
    finally:
        dst.close()
        try:
            await dst.wait_closed()
        except ConnectionError:
            pass


async def _pipe_bidirectional(r1, w1, r2, w2) -> None:
    await asyncio.gather(_pipe_stream(r1, w2), _pipe_stream(r2, w1))
