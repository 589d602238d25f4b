"""Refresh token and session endpoints using the service layer."""

from __future__ import annotations

from flask import Blueprint, Response, request

from authsessions.api.deps import (
    auth_service,
    bearer_subject,
    call_service,
    current_user_id,
    json_response,
    require_auth,
    timing,
)
from authsessions.schemas import RefreshTokenSchema, SessionSchema, TokenPairSchema

bp = Blueprint("auth", __name__)

refresh_schema = RefreshTokenSchema()
token_schema = TokenPairSchema()
sessions_schema = SessionSchema(many=True)


@bp.post("/refresh")
@timing
def refresh():
    """Rotate the refresh token and return a new token pair.

    The user comes from the bearer access token, which may be expired.
    A 503 response means the old refresh token is still valid: retry it.
    """

    user_id = bearer_subject(allow_expired=True)
    data = refresh_schema.load(request.get_json(silent=True) or {})
    service = auth_service(actor_id=user_id)
    pair = call_service(
        service, service.refresh, user_id, data["refreshToken"], data.get("deviceLabel")
    )
    return json_response({"data": token_schema.dump(pair)})


@bp.post("/logout")
@require_auth
@timing
def logout():
    """Revoke one session. Unknown tokens are accepted silently."""

    user_id = current_user_id()
    data = refresh_schema.load(request.get_json(silent=True) or {})
    service = auth_service(actor_id=user_id)
    call_service(service, service.logout, user_id, data["refreshToken"])
    return Response(status=204)


@bp.post("/logout-all")
@require_auth
@timing
def logout_all():
    """Revoke every session of the authenticated user."""

    user_id = current_user_id()
    service = auth_service(actor_id=user_id)
    revoked = call_service(service, service.logout_all, user_id)
    return json_response({"data": {"revoked": revoked}})


@bp.get("/sessions")
@require_auth
@timing
def list_sessions():
    """List active sessions, most recent first."""

    user_id = current_user_id()
    service = auth_service(actor_id=user_id)
    sessions = call_service(service, service.list_sessions, user_id)
    return json_response({"data": sessions_schema.dump(sessions)})
