"""Session-related Marshmallow schemas."""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class RefreshTokenSchema(Schema):
    """Input payload carrying an opaque refresh token."""

    refreshToken = fields.String(  # noqa: N815 - wire name
        required=True, validate=validate.Length(min=16, max=512)
    )
    deviceLabel = fields.String(  # noqa: N815 - wire name
        load_default=None, allow_none=True, validate=validate.Length(max=200)
    )


class DiagnosticsQuerySchema(Schema):
    """Query string for the store diagnostics endpoint."""

    userId = fields.String(  # noqa: N815 - wire name
        load_default=None, validate=validate.Length(min=1, max=128)
    )


class TokenPairSchema(Schema):
    """Response payload with a fresh access/refresh pair."""

    accessToken = fields.String(attribute="access_token", required=True)  # noqa: N815
    refreshToken = fields.String(attribute="refresh_token", required=True)  # noqa: N815
    expiresIn = fields.Integer(attribute="expires_in", required=True)  # noqa: N815
    tokenType = fields.Constant("bearer")  # noqa: N815


class SessionSchema(Schema):
    """One active session; never includes the refresh token itself."""

    id = fields.String(attribute="record_id")
    createdAt = fields.DateTime(attribute="created_at")  # noqa: N815
    expiresAt = fields.DateTime(attribute="expires_at")  # noqa: N815
    deviceLabel = fields.String(attribute="device_label", allow_none=True)  # noqa: N815
    ttlSeconds = fields.Integer(attribute="ttl_seconds")  # noqa: N815
