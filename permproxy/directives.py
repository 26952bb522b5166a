"""
permproxy.directives
~~~~~~~~~~~~~~~~~~~~
Loader for the permissions file.

permissions.conf
----------------
# global options
allow_reading_parent_paths
remove_prefix /files
realm "Restricted Site"

# backends, consulted in the order they appear
tls
basic {
    user alice secret
    rw /alice/
    public
    ro /static/
}

Words are split with shell rules, ``#`` starts a comment and a trailing
``{`` opens a block that a lone ``}`` closes.
"""

from __future__ import annotations

import pathlib
import shlex
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, List, Mapping, Optional

from .request import Passthrough, basic_credentials
from .resolver import Resolver

if TYPE_CHECKING:
    from .backends.base import Backend


class ConfigError(Exception):
    def __init__(self, msg: str, line: int = 0):
        self.msg = msg
        self.line = line
        super().__init__(f"line {line}: {msg}" if line else msg)


@dataclass
class Directive:
    name: str
    args: List[str] = field(default_factory=list)
    line: int = 0
    block: Optional[List["Directive"]] = None

    def children(self) -> List["Directive"]:
        return self.block or []

    def expect(self, *counts: int) -> List[str]:
        """Return ``args`` if their number is one of *counts*."""
        if len(self.args) not in counts:
            wanted = " or ".join(str(c) for c in counts)
            raise ConfigError(
                f"{self.name}: expected {wanted} argument(s), got {len(self.args)}",
                self.line,
            )
        return self.args

    def error(self, msg: str) -> ConfigError:
        return ConfigError(f"{self.name}: {msg}", self.line)


BackendFactory = Callable[[Directive, int], "Backend"]


def _tokenize(text: str) -> Iterator[tuple[int, List[str]]]:
    for lineno, raw in enumerate(text.splitlines(), start=1):
        try:
            words = shlex.split(raw, comments=True)
        except ValueError as e:
            raise ConfigError(str(e), lineno) from None
        if words:
            yield lineno, words


def parse(text: str) -> List[Directive]:
    """Split *text* into top-level directives with their blocks."""
    directives: List[Directive] = []
    current: Optional[Directive] = None

    for lineno, words in _tokenize(text):
        if words == ["}"]:
            if current is None:
                raise ConfigError("unexpected '}'", lineno)
            current = None
            continue

        opens = words[-1] == "{"
        if opens:
            words = words[:-1]
            if not words:
                raise ConfigError("block without a name", lineno)
        if "{" in words or "}" in words:
            raise ConfigError("braces must end a line or stand alone", lineno)

        directive = Directive(words[0], words[1:], lineno)
        if current is not None:
            if opens:
                raise ConfigError("nested blocks are not supported", lineno)
            current.block.append(directive)
            continue

        if opens:
            directive.block = []
            current = directive
        directives.append(directive)

    if current is not None:
        raise ConfigError(f"block '{current.name}' is never closed", current.line)
    return directives


def build_resolver(
    directives: List[Directive],
    factories: Mapping[str, BackendFactory],
    now: Optional[int] = None,
) -> Resolver:
    if now is None:
        now = int(time.time())

    resolver = Resolver()
    passthrough = Passthrough()

    for d in directives:
        if d.name == "allow_reading_parent_paths":
            d.expect(0)
            resolver.allow_reading_parent_paths = True
        elif d.name == "remove_prefix":
            resolver.remove_prefix = d.expect(1)[0]
        elif d.name == "realm":
            resolver.realm = d.expect(1)[0]
        elif d.name == "set_basicauth":
            user, password = d.expect(2)
            passthrough.basic_auth = basic_credentials(user, password)
        elif d.name == "set_cookie":
            name, value = d.expect(2)
            passthrough.cookies.append((name, value))
        else:
            factory = factories.get(d.name)
            if factory is None:
                raise ConfigError(f"unknown permission backend {d.name!r}", d.line)
            d.expect(0)
            resolver.backends.append(factory(d, now))

    if passthrough:
        resolver.passthrough = passthrough
    return resolver


def loads(
    text: str,
    factories: Mapping[str, BackendFactory],
    now: Optional[int] = None,
) -> Resolver:
    return build_resolver(parse(text), factories, now)


def load(
    path: str | pathlib.Path,
    factories: Mapping[str, BackendFactory],
    now: Optional[int] = None,
) -> Resolver:
    try:
        text = pathlib.Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read permissions file {path}: {e}") from e
    return loads(text, factories, now)
