"""
authsessions.services._shared.ports
===================================

Collection of *ports* (hexagonal interfaces) that define the contracts for
refresh token storage, the per-user session index and access token issuing.

These ports decouple the service layer from concrete implementations of the
key-value store and of the token signer.

Modules
-------
- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore`, :class:`~.RefreshTokenRecord` and
    :class:`~.RotationResult`. The rotation algorithm lives on the port and is
    inherited by every adapter.

- :mod:`session_registry`:
    Defines :class:`~.SessionRegistry` and :class:`~.SessionDescriptor`.

- :mod:`token_provider`:
    Defines :class:`~.TokenProvider` for stateless access tokens.

Design Notes
------------
Concrete adapters (Redis, in-process fallback, flask-jwt-extended) live
under ``authsessions.infra`` and are selected once at startup.
"""

from __future__ import annotations

from .refresh_token_store import (
    TTL_MISSING,
    TTL_NO_EXPIRY,
    RefreshTokenRecord,
    RefreshTokenStore,
    RotationResult,
    hash_token,
    record_id_for,
)
from .session_registry import SessionDescriptor, SessionRegistry
from .token_provider import StubTokenProvider, TokenProvider

__all__ = [
    "TTL_MISSING",
    "TTL_NO_EXPIRY",
    "RefreshTokenRecord",
    "RefreshTokenStore",
    "RotationResult",
    "SessionDescriptor",
    "SessionRegistry",
    "StubTokenProvider",
    "TokenProvider",
    "hash_token",
    "record_id_for",
]
