"""
permproxy.permit
~~~~~~~~~~~~~~~~
An entity's full authorization: an ordered set of rules plus the time
until which a cached copy may be reused.

Rules are collected with ``add_rule`` and sorted once by ``finalize``
(longest path first), after which the permit is read-only and ``check``
may be used.
"""

from __future__ import annotations

import enum
import time
from typing import List, Optional, Tuple

from .rules import Rule


class PermitTier(enum.Enum):
    NONE = "none"
    USER = "user"
    DEFAULT = "default"
    PUBLIC = "public"


class PermitStateError(RuntimeError):
    pass


class Permit:
    __slots__ = ("valid_until", "_rules", "_finalized")

    def __init__(self, valid_until: int = 0) -> None:
        self.valid_until = valid_until
        self._rules: List[Rule] = []
        self._finalized = False

    @classmethod
    def create(cls, cache_time: int, now: Optional[int] = None) -> "Permit":
        if now is None:
            now = int(time.time())
        return cls(valid_until=now + cache_time)

    def __repr__(self) -> str:
        return f"Permit(rules={self._rules!r}, valid_until={self.valid_until})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Permit):
            return NotImplemented
        return self.rules == other.rules and self.valid_until == other.valid_until

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return tuple(self._rules)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def is_fresh(self, now: int) -> bool:
        # >= buys one second over identity records, so a permit fetched in
        # the same round-trip as the identity is still usable.
        return self.valid_until >= now

    # ------------------------------------------------------------------ #
    # building
    # ------------------------------------------------------------------ #

    def add(self, rule: Rule) -> None:
        """Append *rule*; a rule for an already present path replaces it."""
        if self._finalized:
            raise PermitStateError("cannot add rules to a finalized permit")
        for i, existing in enumerate(self._rules):
            if existing.path == rule.path:
                self._rules[i] = rule
                return
        self._rules.append(rule)

    def add_rule(self, methods: str, path: str) -> None:
        self.add(Rule.parse(methods, path))

    def finalize(self) -> None:
        if self._finalized:
            raise PermitStateError("permit already finalized")
        self._rules.sort(key=lambda r: len(r.path), reverse=True)
        self._finalized = True

    # ------------------------------------------------------------------ #
    # checking
    # ------------------------------------------------------------------ #

    def check(
        self,
        method: str,
        path: str,
        read_only: bool = False,
        allow_parent_path_disclosure: bool = False,
    ) -> Tuple[bool, bool]:
        """Return ``(allowed, matched)`` for *method* on *path*.

        The longest rule path that prefixes *path* decides. Failing that,
        read-only requests for an ancestor of some rule path are allowed
        when parent-path disclosure is enabled.
        """
        if not self._finalized:
            raise PermitStateError("permit must be finalized before checking")

        for rule in self._rules:
            if rule.matches_path(path):
                return rule.matches_method(method), True

        if read_only and allow_parent_path_disclosure:
            for rule in self._rules:
                if rule.matches_parent_path(path):
                    return True, True

        return False, False
