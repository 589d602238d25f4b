"""Marshmallow schemas for request and response payloads."""

from .auth import (
    DiagnosticsQuerySchema,
    RefreshTokenSchema,
    SessionSchema,
    TokenPairSchema,
)

__all__ = [
    "DiagnosticsQuerySchema",
    "RefreshTokenSchema",
    "SessionSchema",
    "TokenPairSchema",
]
