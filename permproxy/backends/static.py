"""
permproxy.backends.static
~~~~~~~~~~~~~~~~~~~~~~~~~
Users, passwords and permits fixed in the permissions file:

    basic {
        user alice secret     # alice authenticates with Basic auth
        rw /alice/
        user bob              # bob must be identified by another backend
        ro /shared/
        default               # any authenticated user ("*" works too)
        ro /docs/
        public                # everyone, including anonymous ("!")
        ro /static/
    }
"""

from __future__ import annotations

from typing import Dict, Optional

from ..directives import ConfigError, Directive
from ..permit import Permit
from ..request import Challenge, Request, basic_credentials
from ..rules import RuleError
from .base import Backend

NAME = "basic"

USER = "user"
DEFAULT_SHORT, DEFAULT_LONG = "*", "default"
PUBLIC_SHORT, PUBLIC_LONG = "!", "public"


class StaticBackend(Backend):
    def __init__(
        self,
        users: Optional[Dict[str, str]] = None,
        permits: Optional[Dict[str, Permit]] = None,
        default_permit: Optional[Permit] = None,
        public_permit: Optional[Permit] = None,
    ) -> None:
        self.users: Dict[str, str] = users or {}  # credential digest -> username
        self.permits: Dict[str, Permit] = permits or {}
        self.default_permit = default_permit
        self.public_permit = public_permit

    @property
    def name(self) -> str:
        return NAME

    async def resolve_identity(self, request: Request) -> Optional[str]:
        scheme, _, token = request.authorization.partition(" ")
        if scheme.lower() != "basic" or not token:
            return None
        return self.users.get(token.strip())

    async def get_user_permit(self, username: str) -> Optional[Permit]:
        return self.permits.get(username)

    async def get_default_permit(self) -> Optional[Permit]:
        return self.default_permit

    async def get_public_permit(self) -> Optional[Permit]:
        return self.public_permit

    def login(self, request: Request, realm: str) -> Optional[Challenge]:
        realm = realm or "Restricted"
        return Challenge(401, {"WWW-Authenticate": f'Basic realm="{realm}"'})

    @classmethod
    def from_directive(cls, directive: Directive, now: int) -> "StaticBackend":
        backend = cls()
        owner: Optional[str] = None
        digest = ""
        permit: Optional[Permit] = None

        def store() -> None:
            if permit is None:
                return
            permit.finalize()
            if owner == DEFAULT_SHORT:
                backend.default_permit = permit
            elif owner == PUBLIC_SHORT:
                backend.public_permit = permit
            else:
                backend.permits[owner] = permit
                if digest:
                    backend.users[digest] = owner

        for d in directive.children():
            if d.name in (USER, DEFAULT_SHORT, DEFAULT_LONG, PUBLIC_SHORT, PUBLIC_LONG):
                store()
                permit = Permit(valid_until=now)
                if d.name == USER:
                    args = d.expect(1, 2)
                    owner = args[0]
                    digest = basic_credentials(*args) if len(args) == 2 else ""
                elif d.name in (DEFAULT_SHORT, DEFAULT_LONG):
                    d.expect(0)
                    owner, digest = DEFAULT_SHORT, ""
                else:
                    d.expect(0)
                    owner, digest = PUBLIC_SHORT, ""
                continue

            if permit is None:
                raise d.error("permission line before any user, default or public")
            if len(d.args) != 1:
                raise ConfigError(
                    f"malformed permission line, expected '<methods> <path>': "
                    f"{' '.join([d.name, *d.args])}",
                    d.line,
                )
            try:
                permit.add_rule(d.name, d.args[0])
            except RuleError as e:
                raise ConfigError(str(e), d.line) from e

        store()
        return backend
