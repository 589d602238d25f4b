"""
JSON logging for the session service.

Every record leaves the process as one JSON object on stdout. Session code
passes its identifiers through ``extra=`` (``user_id``, ``record_id``,
``state``) and the handler adds the request id and the store backend, so a
single log line can be traced back to a request and to the store that
served it.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any
from uuid import uuid4

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")

#: Attributes copied from the record into the JSON payload when present.
EXTRA_KEYS = ("endpoint", "elapsed_ms", "user_id", "record_id", "state", "backend")


class JSONFormatter(logging.Formatter):
    """One JSON object per record; structured extras are kept as fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            (key, getattr(record, key)) for key in EXTRA_KEYS if hasattr(record, key)
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ContextFilter(logging.Filter):
    """
    Stamp records with the request id and the selected store backend.

    :param backend: Backend name, ``None`` until one is selected. A record
        that already carries a ``backend`` attribute keeps it.
    """

    def __init__(self, backend: str | None = None) -> None:
        super().__init__()
        self.backend = backend

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = ensure_request_id() if has_request_context() else None
        if self.backend is not None and not hasattr(record, "backend"):
            record.backend = self.backend
        return True


def _context_filters() -> list[ContextFilter]:
    return [
        f
        for handler in logging.getLogger().handlers
        for f in handler.filters
        if isinstance(f, ContextFilter)
    ]


def tag_backend(backend: str) -> None:
    """Record ``backend`` on the root handlers' context filters."""
    for context in _context_filters():
        context.backend = backend


def ensure_request_id() -> str:
    """
    Return the id of the current request, adopting a client-supplied
    correlation header or generating a UUID4 the first time.

    Outside a request a fresh UUID4 is returned and nothing is stored.
    """
    if not has_request_context():
        return str(uuid4())
    if "request_id" not in g:
        supplied = next(
            (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)),
            None,
        )
        g.request_id = supplied or str(uuid4())
    return str(g.request_id)


def configure_logging(level: str | int = "INFO", *, stream: IO[str] | None = None) -> None:
    """Replace the root handlers with a single JSON handler at ``level``."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    else:
        root.setLevel(level)


def init_app(app: Flask) -> None:
    """Seed the request id early and echo it back on every response."""

    @app.before_request
    def _seed_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _echo_request_id(response):
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "ContextFilter",
    "JSONFormatter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
    "tag_backend",
]
