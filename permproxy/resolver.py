"""
permproxy.resolver
~~~~~~~~~~~~~~~~~~
Walks the backend chain for a request and decides whether it may pass.

Identity comes from the first backend that recognises the request. Each
method/path check then looks, backend by backend, at the user's own
permit and the backend's default permit, and finally at every backend's
public permit. The first permit with a rule for the path decides, an
explicit deny included.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .backends.base import Backend, BackendError
from .logger import AccessLogger, permit_label
from .methods import classify_request
from .permit import Permit, PermitTier
from .request import Challenge, Passthrough, Request

HEADER_USER = "x-auth-user"
HEADER_SOURCE = "x-auth-source"
HEADER_PERMIT = "x-auth-permit"


@dataclass(slots=True)
class Verdict:
    allowed: bool = False
    matched: bool = False
    backend: Optional[Backend] = None
    tier: PermitTier = PermitTier.NONE


@dataclass(slots=True)
class Decision:
    allowed: bool
    matched: bool
    method: str
    path: str
    username: str = ""
    identity_source: Optional[Backend] = None
    backend: Optional[Backend] = None
    tier: PermitTier = PermitTier.NONE
    challenge: Optional[Challenge] = None
    reason: str = ""

    @property
    def source_name(self) -> str:
        return self.identity_source.name if self.identity_source else ""

    @property
    def permit_label(self) -> str:
        return permit_label(self.backend.name if self.backend else None, self.tier.value)

    @property
    def status(self) -> int:
        if self.allowed:
            return 200
        if self.challenge is not None:
            return self.challenge.status
        return 403


class Resolver:
    def __init__(
        self,
        backends: Optional[List[Backend]] = None,
        allow_reading_parent_paths: bool = False,
        realm: str = "",
        remove_prefix: str = "",
        passthrough: Optional[Passthrough] = None,
        access: Optional[AccessLogger] = None,
    ) -> None:
        self.backends: List[Backend] = list(backends or [])
        self.allow_reading_parent_paths = allow_reading_parent_paths
        self.realm = realm
        self.remove_prefix = remove_prefix
        self.passthrough = passthrough
        self.access = access or AccessLogger()

    async def start(self) -> None:
        for backend in self.backends:
            await backend.start()

    async def close(self) -> None:
        for backend in self.backends:
            await backend.close()

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    async def resolve(self, request: Request) -> Decision:
        username, source = await self.identify(request)
        verdict = Verdict()

        for check in classify_request(request.method, request.path, request.headers):
            if check.path is None:
                decision = Decision(
                    False,
                    False,
                    request.method,
                    request.path,
                    username,
                    source,
                    reason=f"cannot {request.method} without Location header",
                )
                self._trace(decision)
                return decision

            verdict = await self.check_permits(
                username, check.method, self._strip(check.path), check.read_only
            )
            if not verdict.allowed:
                break

        decision = Decision(
            verdict.allowed,
            verdict.matched,
            request.method,
            request.path,
            username,
            source,
            verdict.backend,
            verdict.tier,
        )
        if not decision.allowed:
            decision.reason = f"{username or 'anonymous'} may not {request.method} {request.path}"
            if not username:
                decision.challenge = self.login(request)

        self._trace(decision)
        return decision

    async def identify(self, request: Request) -> Tuple[str, Optional[Backend]]:
        for backend in self.backends:
            try:
                username = await backend.resolve_identity(request)
            except BackendError as e:
                self.access.backend_error(backend.name, "resolve_identity", e)
                continue
            if username:
                return username, backend
        return "", None

    async def check_permits(self, username: str, method: str, path: str, read_only: bool) -> Verdict:
        if username:
            for backend in self.backends:
                try:
                    permit = await backend.get_user_permit(username)
                except BackendError as e:
                    self.access.backend_error(backend.name, "get_user_permit", e)
                    continue
                verdict = self._check(permit, backend, PermitTier.USER, method, path, read_only)
                if verdict.matched:
                    return verdict

                try:
                    permit = await backend.get_default_permit()
                except BackendError as e:
                    self.access.backend_error(backend.name, "get_default_permit", e)
                    continue
                verdict = self._check(permit, backend, PermitTier.DEFAULT, method, path, read_only)
                if verdict.matched:
                    return verdict

        for backend in self.backends:
            try:
                permit = await backend.get_public_permit()
            except BackendError as e:
                self.access.backend_error(backend.name, "get_public_permit", e)
                continue
            verdict = self._check(permit, backend, PermitTier.PUBLIC, method, path, read_only)
            if verdict.matched:
                return verdict

        return Verdict()

    def login(self, request: Request) -> Optional[Challenge]:
        for backend in self.backends:
            challenge = backend.login(request, self.realm)
            if challenge is not None:
                self.access.challenge(backend.name, challenge.status, request.method, request.path)
                return challenge
        return None

    def forwarded_headers(self, request: Request, decision: Decision) -> Dict[str, str]:
        """Headers for the upstream request of a granted *decision*."""
        headers = dict(request.headers)
        for name in (HEADER_USER, HEADER_SOURCE, HEADER_PERMIT):
            headers.pop(name, None)

        if decision.username:
            headers[HEADER_USER] = decision.username
            headers[HEADER_SOURCE] = decision.source_name
        if decision.permit_label:
            headers[HEADER_PERMIT] = decision.permit_label

        # TRACE echoes the request back to the client
        if request.method != "TRACE":
            if self.passthrough:
                self.passthrough.apply(headers)
            if decision.identity_source is not None and decision.identity_source.passthrough:
                decision.identity_source.passthrough.apply(headers)
        return headers

    # ------------------------------------------------------------------ #
    # private
    # ------------------------------------------------------------------ #

    def _check(
        self,
        permit: Optional[Permit],
        backend: Backend,
        tier: PermitTier,
        method: str,
        path: str,
        read_only: bool,
    ) -> Verdict:
        if permit is None:
            return Verdict()
        allowed, matched = permit.check(method, path, read_only, self.allow_reading_parent_paths)
        if not matched:
            return Verdict()
        return Verdict(allowed, True, backend, tier)

    def _strip(self, path: str) -> str:
        if self.remove_prefix and path.startswith(self.remove_prefix):
            rest = path[len(self.remove_prefix):]
            if self.remove_prefix.endswith("/"):
                return "/" + rest
            if not rest:
                return "/"
            if rest.startswith("/"):
                return rest
        return path

    def _trace(self, decision: Decision) -> None:
        if decision.allowed:
            self.access.grant(
                decision.username,
                decision.source_name,
                decision.permit_label,
                decision.method,
                decision.path,
            )
        else:
            self.access.deny(
                decision.username,
                decision.source_name,
                decision.permit_label,
                decision.method,
                decision.path,
                decision.reason,
            )
