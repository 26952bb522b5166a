"""Shared test fixtures for permproxy."""

import logging
from typing import Dict, Optional

import pytest

from permproxy.backends.base import Backend, BackendError
from permproxy.permit import Permit
from permproxy.request import Challenge, Request


def build_permit(*rules, valid_until=0) -> Permit:
    permit = Permit(valid_until=valid_until)
    for methods, path in rules:
        permit.add_rule(methods, path)
    permit.finalize()
    return permit


class FakeBackend(Backend):
    """In-memory backend; ``fail`` names the operations that raise."""

    def __init__(
        self,
        name: str = "fake",
        users: Optional[Dict[str, str]] = None,
        permits: Optional[Dict[str, Permit]] = None,
        default: Optional[Permit] = None,
        public: Optional[Permit] = None,
        challenge: Optional[Challenge] = None,
        fail=(),
    ):
        self._name = name
        self.users = users or {}  # Authorization header -> username
        self.permits = permits or {}
        self.default = default
        self.public = public
        self.challenge = challenge
        self.fail = set(fail)
        self.calls = []

    @property
    def name(self):
        return self._name

    def _record(self, op):
        self.calls.append(op)
        if op in self.fail:
            raise BackendError(f"{op} failed")

    async def resolve_identity(self, request):
        self._record("identity")
        return self.users.get(request.authorization)

    async def get_user_permit(self, username):
        self._record("user")
        return self.permits.get(username)

    async def get_default_permit(self):
        self._record("default")
        return self.default

    async def get_public_permit(self):
        self._record("public")
        return self.public

    def login(self, request, realm):
        return self.challenge


@pytest.fixture
def make_permit():
    return build_permit


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def make_request():
    def _make(method="GET", path="/", headers=None, **kwargs):
        return Request(method=method, path=path, headers=dict(headers or {}), **kwargs)

    return _make


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.events = []

    def emit(self, record):
        self.events.append(record.msg)


@pytest.fixture
def trace():
    """Structured events emitted on the access logger."""
    handler = _Collect()
    logger = logging.getLogger("permproxy.access")
    previous = logger.level
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    yield handler.events
    logger.removeHandler(handler)
    logger.setLevel(previous)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
