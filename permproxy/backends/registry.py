"""
permproxy.backends.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~
Backend names usable in the permissions file. The table is built by the
caller and handed to the directive loader; tests pass their own.
"""

from __future__ import annotations

from typing import Dict

from ..directives import BackendFactory
from . import api, static, tls


def default_factories() -> Dict[str, BackendFactory]:
    return {
        static.NAME: static.StaticBackend.from_directive,
        api.NAME: api.ApiBackend.from_directive,
        tls.NAME: tls.CertificateBackend.from_directive,
    }
