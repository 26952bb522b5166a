"""
permproxy.backends.tls
~~~~~~~~~~~~~~~~~~~~~~
Identifies users by the common name of the client certificate the TLS
layer already verified. Holds no permits and offers no login; other
backends in the chain decide what the user may do.

    tls {
        set_basicauth admin admin   # front a password-protected upstream
        set_cookie session secret
    }
"""

from __future__ import annotations

from typing import Optional

from ..directives import Directive
from ..request import Passthrough, Request, basic_credentials
from .base import Backend

NAME = "tls"


class CertificateBackend(Backend):
    def __init__(self, passthrough: Optional[Passthrough] = None) -> None:
        self.passthrough = passthrough or None

    @property
    def name(self) -> str:
        return NAME

    async def resolve_identity(self, request: Request) -> Optional[str]:
        if request.tls and request.peer_common_name:
            return request.peer_common_name
        return None

    @classmethod
    def from_directive(cls, directive: Directive, now: int) -> "CertificateBackend":
        passthrough = Passthrough()
        for d in directive.children():
            if d.name in ("set_basicauth", "setbasicauth"):
                passthrough.basic_auth = basic_credentials(*d.expect(2))
            elif d.name in ("set_cookie", "setcookie"):
                name, value = d.expect(2)
                passthrough.cookies.append((name, value))
            else:
                raise d.error("unknown option for tls backend")
        return cls(passthrough)
