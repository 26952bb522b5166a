"""
permproxy.tls
~~~~~~~~~~~~~
Server-side TLS. With a client CA configured, certificates are requested
and verified by the ``ssl`` module; the certificate backend only ever sees
the common name of a certificate that passed verification.
"""

from __future__ import annotations

import asyncio
import ssl
from typing import Optional


def server_ssl_context(cert: str, key: str, client_ca: str = "") -> ssl.SSLContext:
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.load_cert_chain(cert, key)
    if client_ca:
        ctx.load_verify_locations(client_ca)
        ctx.verify_mode = ssl.CERT_OPTIONAL
    return ctx


def common_name(peercert: Optional[dict]) -> Optional[str]:
    """Subject CN of a certificate as returned by ``SSLSocket.getpeercert()``."""
    if not peercert:
        return None
    for rdn in peercert.get("subject", ()):
        for attr, value in rdn:
            if attr == "commonName":
                return value
    return None


def peer_common_name(writer: asyncio.StreamWriter) -> Optional[str]:
    return common_name(writer.get_extra_info("peercert"))
