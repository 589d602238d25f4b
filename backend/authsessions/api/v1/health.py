"""Health check endpoint."""

from __future__ import annotations

from flask import Blueprint, current_app

from authsessions.api.deps import json_response, timing
from authsessions.core.extensions import get_backend

bp = Blueprint("health", __name__)


@bp.get("/health")
@timing
def healthcheck():
    """Return application and session store health information."""

    backend = get_backend()
    if backend.connection is not None:
        available = backend.connection.ping()
    else:
        available = backend.tokens.is_available()
    version = current_app.config.get("APP_VERSION", "dev")
    commit = current_app.config.get("APP_COMMIT", "unknown")
    payload = {
        "status": "ok" if available and backend.durable else "degraded",
        "store": {"backend": backend.name, "available": available, "durable": backend.durable},
        "version": version,
        "commit": commit,
    }
    return json_response(payload)
