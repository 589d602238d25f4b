from __future__ import annotations

import logging
from dataclasses import dataclass

from authsessions.core import errors as api_errors
from authsessions.services._shared.errors import (
    RecordNotFoundError,
    RotationFailedError,
    ServiceError,
    StoreError,
    StoreUnavailableError,
)

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContext:
    """
    Carry cross-cutting request-scoped data (auth, request ids).

    :param actor_id: Authenticated user identifier (access token subject).
    :param request_id: Correlation id for logging/tracing.
    :param device_label: Optional client/device description.
    """

    actor_id: str | None = None
    request_id: str | None = None
    device_label: str | None = None


class BaseService:
    """
    Base class for the session services.

    Services raise domain errors from ``services._shared.errors``; the API
    layer passes them through :meth:`translate_exceptions` before they reach
    Flask.

    Notes
    -----
    A store that cannot answer is *retryable* and is never reported as an
    authentication failure: a client receiving 401 discards its session, one
    receiving 503 retries with the same refresh token.
    """

    def __init__(self, *, ctx: ServiceContext | None = None) -> None:
        self.ctx = ctx or ServiceContext()

    def translate_exceptions(self, exc: Exception) -> Exception:
        """
        Return the API error for ``exc``, or ``exc`` itself when it is not a
        service error.

        :param exc: Exception raised within the service.
        :returns: Exception to re-raise.
        """
        if isinstance(exc, RecordNotFoundError):
            return api_errors.Unauthorized("Refresh token is no longer valid. Please sign in.")
        if isinstance(exc, (StoreError, RotationFailedError)):
            if not isinstance(exc, (StoreUnavailableError, RotationFailedError)):
                log.error("store.error type=%s detail=%s", type(exc).__name__, exc)
            return api_errors.ServiceUnavailable()
        if isinstance(exc, ServiceError):
            return api_errors.APIError(message=str(exc), status_code=400, code="bad_request")
        return exc
