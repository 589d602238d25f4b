"""
HTTP error rendering for the session API.

Every failure leaves the API as an RFC 7807 ``application/problem+json``
body carrying a stable ``code`` and the request id. Two families matter to
clients of this service:

* ``401 unauthorized``: the session is gone; sign in again.
* ``503 service_unavailable`` with ``details.retryable`` and ``Retry-After``:
  the session store could not answer; retry with the *same* refresh token.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, jsonify, request
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from authsessions.core.logger import ensure_request_id
from authsessions.services._shared.errors import StoreError

log = logging.getLogger(__name__)

#: Seconds suggested to clients in ``Retry-After`` for retryable failures.
RETRY_AFTER_SECONDS = 1

_CODES = {
    HTTPStatus.BAD_REQUEST: "bad_request",
    HTTPStatus.UNAUTHORIZED: "unauthorized",
    HTTPStatus.FORBIDDEN: "forbidden",
    HTTPStatus.NOT_FOUND: "not_found",
    HTTPStatus.METHOD_NOT_ALLOWED: "method_not_allowed",
    HTTPStatus.UNSUPPORTED_MEDIA_TYPE: "unsupported_media_type",
    HTTPStatus.UNPROCESSABLE_ENTITY: "unprocessable_entity",
    HTTPStatus.INTERNAL_SERVER_ERROR: "internal_server_error",
    HTTPStatus.SERVICE_UNAVAILABLE: "service_unavailable",
}


def code_for(status: int) -> str:
    """Stable snake_case code for an HTTP status (``"error"`` when unmapped)."""
    try:
        return _CODES.get(HTTPStatus(status), "error")
    except ValueError:
        return "error"


def problem(
    status: int,
    code: str,
    detail: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build a Problem Details payload for the current request.

    :param status: HTTP status code.
    :param code: Machine-readable error code.
    :param detail: Client-safe summary.
    :param details: Optional structured context (validation messages, ``retryable``).
    """
    body: dict[str, Any] = {
        "type": "about:blank",
        "title": HTTPStatus(status).phrase,
        "status": int(status),
        "detail": detail,
        "instance": request.path,
        "code": code,
        "request_id": ensure_request_id(),
    }
    if details:
        body["details"] = details
    return body


def problem_response(
    body: dict[str, Any], headers: dict[str, str] | None = None
) -> tuple[Response, int, dict[str, str]]:
    resp = jsonify(body)
    resp.mimetype = "application/problem+json"
    return resp, body["status"], headers or {}


class APIError(Exception):
    """
    An error the API answers with a problem response.

    Parameters
    ----------
    message : str
        Client-safe description, rendered as ``detail``.
    status_code : int, optional
        HTTP status. Defaults to ``400``.
    code : str, optional
        Machine-readable identifier.
    details : dict[str, Any] | None, optional
        Structured context rendered under ``details``.
    headers : dict[str, str] | None, optional
        Extra response headers, such as ``Retry-After``.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str = "bad_request",
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}
        self.headers = headers or {}

    def to_problem(self) -> dict[str, Any]:
        return problem(self.status_code, self.code, self.message, self.details or None)


class Unauthorized(APIError):
    """The caller is not authenticated, or its session no longer exists."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, status_code=HTTPStatus.UNAUTHORIZED, code="unauthorized")


class ServiceUnavailable(APIError):
    """
    The session store could not answer.

    Never means the session was invalidated: the client keeps its refresh
    token and retries after ``Retry-After`` seconds.
    """

    def __init__(
        self,
        message: str = "Session store temporarily unavailable",
        retry_after: int = RETRY_AFTER_SECONDS,
    ) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="service_unavailable",
            details={"retryable": True},
            headers={"Retry-After": str(retry_after)},
        )


# --------------------------------------------------------------------------- #
# Handlers
# --------------------------------------------------------------------------- #


def _on_api_error(err: APIError):
    body = err.to_problem()
    emit = log.error if err.status_code >= 500 else log.warning
    emit("api_error code=%s status=%s detail=%s", err.code, err.status_code, err.message)
    return problem_response(body, err.headers)


def _on_http_exception(err: HTTPException):
    status = int(err.code or HTTPStatus.INTERNAL_SERVER_ERROR)
    if status == HTTPStatus.NOT_FOUND:
        detail = f"Route '{request.path}' not found"
    else:
        detail = (err.description or HTTPStatus(status).phrase).strip()
    emit = log.error if status >= 500 else log.warning
    emit("http_error status=%s detail=%s", status, detail)
    return problem_response(problem(status, code_for(status), detail))


def _on_validation_error(err: ValidationError):
    log.warning("validation_error fields=%s", sorted(err.messages_dict))
    return problem_response(
        problem(
            HTTPStatus.UNPROCESSABLE_ENTITY,
            "validation_error",
            "Validation failed",
            {"errors": err.messages},
        )
    )


def _on_store_error(err: StoreError):
    # Reached only when a route did not go through a service translation.
    log.error("store_error type=%s", type(err).__name__, exc_info=err)
    return _on_api_error(ServiceUnavailable())


def _on_unexpected(err: Exception):
    log.error("unhandled_exception type=%s", type(err).__name__, exc_info=err)
    return problem_response(
        problem(HTTPStatus.INTERNAL_SERVER_ERROR, "internal_server_error", "Unexpected error")
    )


def init_app(app: Flask) -> None:
    """Render every error raised by a view as problem+json."""
    app.register_error_handler(APIError, _on_api_error)
    app.register_error_handler(HTTPException, _on_http_exception)
    app.register_error_handler(ValidationError, _on_validation_error)
    app.register_error_handler(StoreError, _on_store_error)
    app.register_error_handler(Exception, _on_unexpected)
