"""
permproxy.backends.base
~~~~~~~~~~~~~~~~~~~~~~~
The contract every identity/permit source implements.
"""

from __future__ import annotations

import abc
from typing import Optional

from ..permit import Permit
from ..request import Challenge, Passthrough, Request


class BackendError(Exception):
    """A backend could not answer; it is skipped for the current call."""


class Backend(abc.ABC):
    #: credentials injected into forwarded requests this backend identified
    passthrough: Optional[Passthrough] = None

    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...

    @abc.abstractmethod
    async def resolve_identity(self, request: Request) -> Optional[str]:
        """Username for *request*, or None if this backend cannot tell."""

    async def get_user_permit(self, username: str) -> Optional[Permit]:
        return None

    async def get_default_permit(self) -> Optional[Permit]:
        return None

    async def get_public_permit(self) -> Optional[Permit]:
        return None

    def login(self, request: Request, realm: str) -> Optional[Challenge]:
        return None

    async def start(self) -> None:
        """Called once the event loop is running."""

    async def close(self) -> None:
        """Release background tasks and connections."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
