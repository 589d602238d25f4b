"""Authentication helpers for tests."""

from __future__ import annotations

from datetime import timedelta

from flask import Flask
from flask_jwt_extended import create_access_token

from authsessions.core.extensions import get_backend
from authsessions.infra.jwt.flask_jwt_token_provider import JWTTokenProvider
from authsessions.services.auth.dto import AuthTokenConfig, TokenPair
from authsessions.services.auth.service import AuthService


def issue_token(identity: str, expires_delta: timedelta | None = None) -> str:
    """Generate an access JWT for ``identity``.

    Parameters
    ----------
    identity:
        Subject identifier to encode in the token.
    expires_delta:
        Optional expiry delta. If ``None``, the default expiry is used.
    """

    return create_access_token(identity=identity, expires_delta=expires_delta)


def expired_token(identity: str) -> str:
    """Return an already expired access JWT for ``identity``."""

    return create_access_token(identity=identity, expires_delta=timedelta(seconds=-1))


def issue_session(app: Flask, user_id: str, device_label: str | None = None) -> TokenPair:
    """Log ``user_id`` in against the app's backend, as the login flow would.

    Returns
    -------
    TokenPair
        Access JWT plus the raw refresh token.
    """

    with app.app_context():
        backend = get_backend(app)
        service = AuthService(
            token_provider=JWTTokenProvider(),
            refresh_store=backend.tokens,
            session_registry=backend.sessions,
            token_cfg=AuthTokenConfig(
                access_expires=timedelta(seconds=app.config["ACCESS_TOKEN_TTL"]),
                refresh_expires=timedelta(seconds=app.config["REFRESH_TOKEN_TTL"]),
                max_sessions=app.config["MAX_SESSIONS_PER_USER"],
            ),
        )
        return service.issue_tokens(user_id, device_label)
