"""
permproxy.methods
~~~~~~~~~~~~~~~~~
HTTP method vocabulary: alias tokens used in permission lines, the
read-only predicate, and the rewriting of compound WebDAV-style requests
(MOVE, COPY, PATCH with a destination, websocket upgrades) into the plain
method/path checks the resolver evaluates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional, Tuple
from urllib.parse import urlsplit

WEBSOCKET = "WEBSOCKET"

_RO = frozenset({"GET", "HEAD", "PROPFIND", "OPTIONS", "LOCK", "UNLOCK"})
_RW = _RO | {"POST", "PUT", "DELETE", "MKCOL", "PROPPATCH"}
_WS = frozenset({WEBSOCKET})

ALIASES: Dict[str, FrozenSet[str]] = {
    "ro": _RO,
    "rw": _RW,
    "ws": _WS,
    "any": _RW | _WS,
}

_READ_ONLY = frozenset({"GET", "HEAD", "PROPFIND", "OPTIONS"})


def expand_alias(token: str) -> FrozenSet[str]:
    """Canonical methods behind *token*; unknown tokens stand for themselves."""
    return ALIASES.get(token, frozenset({token}))


def is_read_only(method: str) -> bool:
    return method in _READ_ONLY


@dataclass(frozen=True, slots=True)
class Check:
    """One method/path pair to authorize.

    ``path`` is None when a compound request lacks its destination header.
    """

    method: str
    path: Optional[str]
    read_only: bool = False


def _destination(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if value.startswith(("http://", "https://")):
        parts = urlsplit(value)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path
    return value


def classify_request(
    method: str, path: str, headers: Mapping[str, str]
) -> Tuple[Check, ...]:
    """Translate a request into the checks that must all pass.

    *headers* must use lower-case keys.
    """
    if headers.get("upgrade", "").lower() == "websocket":
        return (Check(WEBSOCKET, path),)

    if method == "MOVE":
        return (Check("DELETE", path), Check("PUT", _destination(headers.get("location"))))

    if method == "COPY":
        return (Check("GET", path), Check("PUT", _destination(headers.get("location"))))

    if method == "PATCH":
        dest = _destination(headers.get("destination"))
        if dest is not None:
            source = "GET" if headers.get("action", "").lower() == "copy" else "DELETE"
            return (Check(source, path), Check("PUT", dest))

    return (Check(method, path, is_read_only(method)),)
