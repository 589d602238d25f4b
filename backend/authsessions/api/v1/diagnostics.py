"""Read-only session store diagnostics for the ops layer (not for public exposure)."""

from __future__ import annotations

from flask import Blueprint, request

from authsessions.api.deps import current_user_id, json_response, require_auth, timing
from authsessions.core.extensions import get_backend
from authsessions.schemas import DiagnosticsQuerySchema, RefreshTokenSchema
from authsessions.services.sessions.diagnostics import DiagnosticsReporter

bp = Blueprint("diagnostics", __name__)

query_schema = DiagnosticsQuerySchema()
token_schema = RefreshTokenSchema()


def _reporter() -> DiagnosticsReporter:
    backend = get_backend()
    return DiagnosticsReporter(
        tokens=backend.tokens,
        sessions=backend.sessions,
        backend=backend.name,
        key_prefix=backend.key_prefix,
    )


@bp.get("/store")
@require_auth
@timing
def store_diagnostics():
    """
    Token count, TTLs and persistence, globally or for ``?userId=``.

    Any authenticated caller can read any user's token TTLs here; no role
    check is made. Expose this route only behind the ops layer's own
    authorization, never on the public API surface.
    """

    args = query_schema.load(request.args)
    report = _reporter().get_diagnostics(args.get("userId"))
    return json_response({"data": report.to_dict()})


@bp.post("/verify-refresh-token")
@require_auth
@timing
def verify_refresh_token():
    """Check that the caller's refresh token is stored with a positive TTL."""

    data = token_schema.load(request.get_json(silent=True) or {})
    inspection = _reporter().inspect_token(current_user_id(), data["refreshToken"])
    return json_response({"data": inspection.to_dict()})
