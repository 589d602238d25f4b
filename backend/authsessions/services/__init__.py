"""Service layer public API.

This package exposes the essential building blocks for the service layer so
that callers can import from :mod:`authsessions.services` without knowing
the internal structure.

Re-exports
----------
- Base primitives (from ``authsessions.services._shared.base``)
    * :class:`BaseService`
    * :class:`ServiceContext`

- Auth service (from ``authsessions.services.auth``)
    * :class:`AuthService`
    * DTOs: :class:`TokenPair`, :class:`AuthTokenConfig`

- Session services (from ``authsessions.services.sessions``)
    * :class:`RotationProtocol`, :class:`DiagnosticsReporter`
"""

from __future__ import annotations

from ._shared.base import BaseService, ServiceContext
from .auth.dto import AuthTokenConfig, TokenPair
from .auth.service import AuthService
from .sessions import DiagnosticsReporter, RotationProtocol

__all__ = [
    "AuthService",
    "AuthTokenConfig",
    "BaseService",
    "DiagnosticsReporter",
    "RotationProtocol",
    "ServiceContext",
    "TokenPair",
]
