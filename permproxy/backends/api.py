"""
permproxy.backends.api
~~~~~~~~~~~~~~~~~~~~~~
Identities and permits fetched from a remote HTTP API and cached.

    api {
        name MyWebsite
        user http://localhost:8080/authapi
        permit http://localhost:8080/authapi/{{username}}
        login http://localhost:8080/login?next={{resource}}
        add_prefix /api/resource /files
        add_without_prefix
        cache 600
        cleanup 3600
    }

The user URL receives the client's context (host, address, scheme, basic
auth and cookies) and answers, with status 200, a JSON document such as

    {"BasicAuth": true, "Username": "alice", "Permissions": {"/a/": "rw"}}
    {"Cookie": "session=abc", "Username": "alice"}

telling which credential identified the user. 403/404 means unknown.
The permit URL answers the same shape for an already known user; the
reserved names ``*`` and ``!`` fetch the default and public permits.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..cache import MIN_INTERVAL, Sweeper, TTLCache, User
from ..directives import ConfigError, Directive
from ..permit import Permit
from ..request import Challenge, Request
from ..rules import RuleError
from .base import Backend, BackendError

NAME = "api"

TIMEOUT = 10.0
DEFAULT_CACHE = 600
DEFAULT_CLEANUP = 3600

USERNAME_PLACEHOLDER = "{{username}}"
RESOURCE_PLACEHOLDER = "{{resource}}"
DEFAULT_USERNAME = "*"
PUBLIC_USERNAME = "!"

log = logging.getLogger("permproxy.backends.api")


class ApiResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    basic_auth: bool = Field(False, alias="BasicAuth")
    cookie: str = Field("", alias="Cookie")
    username: str = Field("", alias="Username")
    permissions: Dict[str, str] = Field(default_factory=dict, alias="Permissions")

    @field_validator("permissions", mode="before")
    @classmethod
    def _null_permissions(cls, value):
        # a user without permissions may be sent as "Permissions": null
        return {} if value is None else value


class ApiBackend(Backend):
    def __init__(
        self,
        user_url: str,
        permit_url: str = "",
        login_url: str = "",
        custom_name: str = "",
        add_prefixes: Sequence[str] = (),
        add_without_prefix: bool = False,
        cache_time: int = DEFAULT_CACHE,
        cleanup: int = DEFAULT_CLEANUP,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if permit_url and USERNAME_PLACEHOLDER not in permit_url:
            raise ValueError(f"permit URL must contain {USERNAME_PLACEHOLDER}")
        self.user_url = user_url
        self.permit_url = permit_url
        self.login_url = login_url
        self.custom_name = custom_name
        self.add_prefixes: List[str] = list(add_prefixes)
        self.add_without_prefix = add_without_prefix
        self.cache_time = max(MIN_INTERVAL, cache_time)
        self.clock = clock

        self.users: TTLCache[User] = TTLCache()
        self.permits: TTLCache[Permit] = TTLCache(inclusive=True)
        self.default_permit: Optional[Permit] = None
        self.public_permit: Optional[Permit] = None
        self.sweeper = Sweeper([self.users, self.permits], cleanup, clock, self.name)

        self._client = client
        self._owns_client = client is None

    @property
    def name(self) -> str:
        if self.custom_name:
            return f"{NAME}: {self.custom_name}"
        return NAME

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=TIMEOUT)
        return self._client

    def _now(self) -> int:
        return int(self.clock())

    # ------------------------------------------------------------------ #
    # backend contract
    # ------------------------------------------------------------------ #

    async def resolve_identity(self, request: Request) -> Optional[str]:
        keys = _identity_keys(request)
        if not keys:
            return None

        now = self._now()
        for key in keys:
            user = self.users.get(key, now)
            if user is not None:
                return user.username

        user = await self.fetch_user(request)
        return user.username if user else None

    async def get_user_permit(self, username: str) -> Optional[Permit]:
        permit = self.permits.get(username, self._now())
        if permit is not None:
            return permit
        if not self.permit_url:
            return None
        return await self.fetch_permit(username)

    async def get_default_permit(self) -> Optional[Permit]:
        return await self._shared_permit(DEFAULT_USERNAME, self.default_permit)

    async def get_public_permit(self) -> Optional[Permit]:
        return await self._shared_permit(PUBLIC_USERNAME, self.public_permit)

    def login(self, request: Request, realm: str) -> Optional[Challenge]:
        if not self.login_url:
            return None
        url = self.login_url.replace(RESOURCE_PLACEHOLDER, quote(request.path, safe="/"))
        return Challenge(302, {"Location": url})

    async def _shared_permit(self, reserved: str, cached: Optional[Permit]) -> Optional[Permit]:
        if cached is not None and cached.is_fresh(self._now()):
            return cached
        if not self.permit_url:
            return cached
        return await self.fetch_permit(reserved)

    # ------------------------------------------------------------------ #
    # remote calls
    # ------------------------------------------------------------------ #

    async def fetch_user(self, request: Request) -> Optional[User]:
        """Authenticate *request* remotely and cache the result."""
        try:
            resp = await self._http().get(self.user_url, headers=_forwarded_headers(request))
        except httpx.HTTPError as e:
            raise BackendError(f"user request to {self.user_url} failed: {e}") from e

        if resp.status_code in (403, 404):
            return None
        _raise_for_status(resp)

        payload = _decode(resp)
        if not payload.username:
            raise BackendError('invalid response: missing "Username"')
        if payload.basic_auth:
            if not request.authorization:
                raise BackendError("invalid response: BasicAuth without an Authorization header")
            key = "auth=" + request.authorization
        elif payload.cookie:
            key = payload.cookie
        else:
            raise BackendError(
                'invalid response: missing either "BasicAuth" or "Cookie" for user identification'
            )

        now = self._now()
        user = User.create(payload.username, self.cache_time, now)
        permit = self.build_permit(payload, now) if payload.permissions else None

        await self.users.put(key, user)
        if permit is not None:
            await self.permits.put(payload.username, permit)

        log.debug({"event": "identity", "backend": self.name, "user": user.username})
        return user

    async def fetch_permit(self, username: str) -> Permit:
        url = self.permit_url.replace(USERNAME_PLACEHOLDER, quote(username, safe="*!"))
        try:
            resp = await self._http().get(url)
        except httpx.HTTPError as e:
            raise BackendError(f"permit request to {url} failed: {e}") from e

        now = self._now()
        if resp.status_code in (403, 404):
            permit = Permit.create(self.cache_time, now)
            permit.finalize()
        else:
            _raise_for_status(resp)
            permit = self.build_permit(_decode(resp), now)

        if username == DEFAULT_USERNAME:
            self.default_permit = permit
        elif username == PUBLIC_USERNAME:
            self.public_permit = permit
        else:
            await self.permits.put(username, permit)

        log.debug({"event": "permit", "backend": self.name, "user": username})
        return permit

    def build_permit(self, payload: ApiResponse, now: int) -> Permit:
        permit = Permit.create(self.cache_time, now)
        try:
            for path, methods in payload.permissions.items():
                if not self.add_prefixes or self.add_without_prefix:
                    permit.add_rule(methods, path)
                for prefix in self.add_prefixes:
                    permit.add_rule(methods, prefix + path)
        except RuleError as e:
            raise BackendError(f"could not parse permission: {e}") from e
        permit.finalize()
        return permit

    # ------------------------------------------------------------------ #
    # configuration
    # ------------------------------------------------------------------ #

    @classmethod
    def from_directive(cls, directive: Directive, now: int) -> "ApiBackend":
        opts: Dict[str, object] = {}
        prefixes: List[str] = []

        for d in directive.children():
            if d.name == "name":
                opts["custom_name"] = d.expect(1)[0]
            elif d.name == "user":
                opts["user_url"] = d.expect(1)[0]
            elif d.name == "permit":
                url = d.expect(1)[0]
                if USERNAME_PLACEHOLDER not in url:
                    raise d.error(f"URL must contain a username placeholder: {USERNAME_PLACEHOLDER}")
                opts["permit_url"] = url
            elif d.name == "login":
                opts["login_url"] = d.expect(1)[0]
            elif d.name == "add_prefix":
                if not d.args:
                    raise d.error("expected at least one prefix")
                prefixes.extend(d.args)
            elif d.name in ("add_without_prefix", "add_no_prefix"):
                d.expect(0)
                opts["add_without_prefix"] = True
            elif d.name in ("cache", "cleanup"):
                value = d.expect(1)[0]
                try:
                    seconds = int(value)
                except ValueError:
                    raise d.error(f"expected seconds, got {value!r}") from None
                opts["cache_time" if d.name == "cache" else "cleanup"] = max(MIN_INTERVAL, seconds)
            else:
                raise d.error("unknown option for api backend")

        if "user_url" not in opts:
            raise ConfigError("api backend requires a user URL", directive.line)
        return cls(add_prefixes=prefixes, **opts)  # type: ignore[arg-type]


def _identity_keys(request: Request) -> List[str]:
    keys = []
    if request.authorization:
        keys.append("auth=" + request.authorization)
    keys.extend(f"{name}={value}" for name, value in request.cookies())
    return keys


def _forwarded_headers(request: Request) -> Dict[str, str]:
    headers = {
        "X-Real-IP": request.remote_addr,
        "X-Forwarded-For": request.remote_addr,
        "X-Forwarded-Proto": "https" if request.tls else "http",
    }
    if request.host:
        headers["Host"] = request.host
    if request.authorization.lower().startswith("basic "):
        headers["Authorization"] = request.authorization
    cookie = request.header("cookie")
    if cookie:
        headers["Cookie"] = cookie
    return headers


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code == 200:
        return
    if resp.status_code == 500:
        raise BackendError("server error")
    raise BackendError(f"unexpected status code: {resp.status_code}")


def _decode(resp: httpx.Response) -> ApiResponse:
    try:
        return ApiResponse.model_validate_json(resp.content)
    except ValidationError as e:
        raise BackendError(f"could not unpack response: {e}") from e
