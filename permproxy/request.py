"""
permproxy.request
~~~~~~~~~~~~~~~~~
What the transport hands to the authorization layer, and what the
authorization layer may hand back instead of a plain 403.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(slots=True)
class Request:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)  # lower-case keys
    remote_addr: str = ""
    host: str = ""
    tls: bool = False
    peer_common_name: Optional[str] = None

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def authorization(self) -> str:
        return self.headers.get("authorization", "")

    def cookies(self) -> List[Tuple[str, str]]:
        """Cookies in header order; pairs without a name are skipped."""
        pairs = []
        for part in self.headers.get("cookie", "").split(";"):
            name, _, value = part.partition("=")
            name = name.strip()
            if not name:
                continue
            value = value.strip()
            if len(value) > 1 and value[0] == value[-1] == '"':
                value = value[1:-1]
            pairs.append((name, value))
        return pairs


@dataclass(frozen=True, slots=True)
class Challenge:
    """A login response to send instead of a bare 403."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)


def basic_credentials(user: str, password: str) -> str:
    """The token carried after ``Basic `` in an Authorization header."""
    return base64.b64encode(f"{user}:{password}".encode()).decode()


@dataclass(slots=True)
class Passthrough:
    """Fixed credentials added to requests forwarded upstream."""

    basic_auth: str = ""
    cookies: List[Tuple[str, str]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.basic_auth or self.cookies)

    def apply(self, headers: Dict[str, str]) -> None:
        if self.basic_auth:
            headers["authorization"] = "Basic " + self.basic_auth
        if self.cookies:
            added = "; ".join(f"{name}={value}" for name, value in self.cookies)
            existing = headers.get("cookie")
            headers["cookie"] = f"{existing}; {added}" if existing else added
