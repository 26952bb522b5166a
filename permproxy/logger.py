"""
permproxy.logger
~~~~~~~~~~~~~~~~
Authorization trace and access log: JSON lines with daily rotation, plus
a human-readable stream on stderr in debug mode.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_ISO = "%Y-%m-%dT%H:%M:%SZ"

LOGGER_NAME = "permproxy"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z basic:alice GET /docs/a.txt GRANTED basic:default """

    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict) or record.levelno >= logging.ERROR:
            return super().format(record)
        d: Dict[str, Any] = record.msg
        event = d.get("event", "-")

        user = d.get("user") or "-"
        if d.get("source"):
            user = f'{d["source"]}:{user}'
        parts = [d.get("ts", _now()), user]

        if event in ("grant", "deny"):
            parts.extend([d.get("method", "-"), d.get("path", "-")])
            parts.append("GRANTED" if event == "grant" else "DENIED")
            if d.get("permit"):
                parts.append(d["permit"])
            if d.get("reason"):
                parts.append(f'({d["reason"]})')
        elif event == "end":
            parts.extend(
                [d.get("method", "-"), d.get("url", "-"), str(d.get("status", "-")), f'{d.get("ms", 0)} ms']
            )
        else:
            parts.append(event)
            parts.extend(f"{k}={v}" for k, v in d.items() if k not in ("event", "ts", "user", "source"))
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        msg = record.msg if isinstance(record.msg, dict) else {"msg": record.getMessage()}
        return json.dumps(msg, separators=(",", ":"), default=str)


def permit_label(backend_name: Optional[str], tier: str) -> str:
    """How a deciding permit is named in logs and the X-Auth-Permit header."""
    if not backend_name:
        return ""
    if tier in ("default", "public"):
        return f"{backend_name}:{tier}"
    return backend_name


class AccessLogger:
    def __init__(self, basename: str | Path | None = None, debug: bool = False):
        root = logging.getLogger(LOGGER_NAME)
        root.setLevel(logging.DEBUG if debug else logging.INFO)

        if basename is not None:
            root.propagate = False  # don't spam the root logger
            jsonl_file = Path(basename).with_suffix(".jsonl")
            if not any(
                getattr(h, "baseFilename", None) == str(jsonl_file.absolute()) for h in root.handlers
            ):
                h = logging.handlers.TimedRotatingFileHandler(
                    jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
                )
                h.setFormatter(_JSONFormatter())
                root.addHandler(h)

        if debug and not any(isinstance(h.formatter, _PlainFormatter) for h in root.handlers):
            s = logging.StreamHandler(sys.stderr)
            s.setFormatter(_PlainFormatter())
            root.addHandler(s)

        self.log = logging.getLogger(LOGGER_NAME + ".access")

    def grant(self, user: str, source: str, permit: str, method: str, path: str):
        self.log.info(
            {
                "event": "grant",
                "ts": _now(),
                "user": user,
                "source": source,
                "permit": permit,
                "method": method,
                "path": path,
            }
        )

    def deny(self, user: str, source: str, permit: str, method: str, path: str, reason: str = ""):
        self.log.info(
            {
                "event": "deny",
                "ts": _now(),
                "user": user,
                "source": source,
                "permit": permit,
                "method": method,
                "path": path,
                "reason": reason,
            }
        )

    def challenge(self, backend: str, status: int, method: str, path: str):
        self.log.info(
            {
                "event": "challenge",
                "ts": _now(),
                "backend": backend,
                "status": status,
                "method": method,
                "path": path,
            }
        )

    def backend_error(self, backend: str, operation: str, error: Exception):
        self.log.warning(
            {
                "event": "backend_error",
                "ts": _now(),
                "backend": backend,
                "operation": operation,
                "error": str(error),
            }
        )

    def start(self, ip: str, method: str, url: str, ua: str):
        self.log.debug(
            {
                "event": "start",
                "ts": _now(),
                "ip": ip,
                "method": method,
                "url": url,
                "ua": ua,
            }
        )

    def end(self, user: str, method: str, url: str, status: int, duration_ms: int):
        self.log.info(
            {
                "event": "end",
                "ts": _now(),
                "user": user or "-",
                "method": method,
                "url": url,
                "status": status,
                "ms": duration_ms,
            }
        )
