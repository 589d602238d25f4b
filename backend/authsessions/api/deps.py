"""Shared API helpers for request parsing and cross-cutting concerns."""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any, TypeVar

from flask import Response, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from authsessions.core.errors import Unauthorized
from authsessions.core.extensions import get_backend
from authsessions.infra.jwt.flask_jwt_token_provider import JWTTokenProvider
from authsessions.services._shared.base import BaseService, ServiceContext
from authsessions.services._shared.errors import ServiceError
from authsessions.services.auth.dto import AuthTokenConfig
from authsessions.services.auth.service import AuthService

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")

BEARER_PREFIX = "Bearer "


def require_auth(func: F) -> F:
    """Ensure the request carries a valid JWT access token."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        verify_jwt_in_request(optional=False)
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def current_user_id() -> str:
    """Subject of the verified access token."""
    return str(get_jwt_identity())


def bearer_subject(*, allow_expired: bool = True) -> str:
    """
    Resolve the user from the bearer access token, expired or not.

    Refresh is exactly the moment the access token has expired, so its
    signature is checked but its ``exp`` is not.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        raise Unauthorized("Missing bearer access token")
    token = header[len(BEARER_PREFIX) :].strip()
    try:
        return JWTTokenProvider().get_subject(token, allow_expired=allow_expired)
    except (PyJWTError, JWTExtendedException, KeyError) as exc:
        raise Unauthorized("Invalid access token") from exc


def auth_service(*, actor_id: str | None = None) -> AuthService:
    """Build an :class:`AuthService` over the selected backend and app config."""
    cfg = current_app.config
    backend = get_backend()
    return AuthService(
        token_provider=JWTTokenProvider(),
        refresh_store=backend.tokens,
        session_registry=backend.sessions,
        token_cfg=AuthTokenConfig(
            access_expires=timedelta(seconds=int(cfg["ACCESS_TOKEN_TTL"])),
            refresh_expires=timedelta(seconds=int(cfg["REFRESH_TOKEN_TTL"])),
            max_sessions=int(cfg["MAX_SESSIONS_PER_USER"]),
        ),
        ctx=ServiceContext(actor_id=actor_id, request_id=request.headers.get("X-Request-ID")),
    )


def call_service(service: BaseService, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a service call, re-raising service errors as API errors."""
    try:
        return fn(*args, **kwargs)
    except ServiceError as exc:
        raise service.translate_exceptions(exc) from exc


def json_response(payload: Any, *, status: int = 200) -> Response:
    """Return a JSON response enforcing a consistent MIME type."""

    response = jsonify(payload)
    response.status_code = status
    return response


def timing(func: F) -> F:
    """Decorator capturing handler execution time in milliseconds."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            request_endpoint = getattr(request, "endpoint", None)
            current_app.logger.debug(
                "request.elapsed",
                extra={"endpoint": request_endpoint, "elapsed_ms": round(elapsed_ms, 2)},
            )

    return wrapper  # type: ignore[return-value]
