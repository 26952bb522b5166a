"""
permproxy.rules
~~~~~~~~~~~~~~~
A single authorization clause: a path prefix plus the methods allowed
(or, for blacklists, denied) below it.

Method strings as written in permission lines:

    ro              alias, expanded at construction
    GET,HEAD,CRAZY  explicit list, custom verbs allowed
    ~DELETE,PUT     everything except the listed methods
    any             everything
    none  /  ~      nothing
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet

from .methods import expand_alias

BLACKLIST_CHAR = "~"


class RuleError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Rule:
    path: str
    methods: FrozenSet[str] = frozenset()
    methods_are_blacklist: bool = False

    @classmethod
    def parse(cls, methods: str, path: str) -> "Rule":
        methods = methods.strip()
        if not methods:
            raise RuleError(f"no methods given for path {path!r}")
        if not path:
            raise RuleError(f"no path given for methods {methods!r}")

        if methods in (BLACKLIST_CHAR, "none"):
            return cls(path)
        if methods == "any":
            return cls(path, methods_are_blacklist=True)

        blacklist = methods.startswith(BLACKLIST_CHAR)
        if blacklist:
            methods = methods.lstrip(BLACKLIST_CHAR)

        expanded: set[str] = set()
        for token in methods.split(","):
            token = token.strip()
            if not token:
                raise RuleError(f"empty method in {methods!r} for path {path!r}")
            expanded |= expand_alias(token)

        return cls(path, frozenset(expanded), blacklist)

    def matches_method(self, method: str) -> bool:
        return (method in self.methods) != self.methods_are_blacklist

    def matches_path(self, path: str) -> bool:
        return path.startswith(self.path)

    def matches_parent_path(self, path: str) -> bool:
        """True if *path* is a strict ancestor of this rule's path."""
        return len(path) < len(self.path) and self.path.startswith(path)
