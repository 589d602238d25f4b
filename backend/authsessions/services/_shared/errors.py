"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and never import Flask or HTTP
helpers. They are the stable contract between the storage adapters
(``authsessions.infra``), the session services and the API layer.

The translation to HTTP responses (RFC 7807) is handled by
``authsessions/core/errors.py`` via ``BaseService.translate_exceptions()``.

Taxonomy
--------
- :class:`StoreUnavailableError` (and :class:`StoreTimeoutError`): the backing
  store cannot be reached. Retryable, must never force a logout.
- :class:`RecordNotFoundError`: the key is genuinely absent while
  connectivity is confirmed. Surfaced as an authentication failure.
- :class:`RotationFailedError`: the new record could not be confirmed; the
  old token is still valid.
- :class:`SecurityInconsistencyError`: the old record survived a successful
  rotation. Carried as a value and logged, never raised to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from storage adapters or services.
    - The API layer or BaseService will later translate them to APIError.
    """

    pass


class StoreError(ServiceError):
    """Base class for failures reported by the backing key-value store."""

    retryable = True


# --------------------------------------------------------------------------- #
# Connectivity
# --------------------------------------------------------------------------- #


class StoreUnavailableError(StoreError):
    """
    Raised when connectivity to the store is lost or was never established.

    Callers must treat this as *retry later*, never as *session invalid*.
    """

    def __init__(self, message: str = "Session store unavailable") -> None:
        super().__init__(message)


class StoreTimeoutError(StoreUnavailableError):
    """Raised when a store command exceeds its command timeout."""

    def __init__(self, timeout: float, message: str | None = None) -> None:
        super().__init__(message or f"Session store command timed out after {timeout:g}s")
        self.timeout = timeout


class BatchMismatchError(StoreError):
    """
    Raised when a pipelined batch returns a different number of results.

    The whole batch is considered failed; callers must not assume any of the
    commands were applied.
    """

    def __init__(self, submitted: int, returned: int) -> None:
        super().__init__(f"Pipeline returned {returned} results for {submitted} commands")
        self.submitted = submitted
        self.returned = returned


class StoreCommandError(StoreError):
    """Raised when a single command inside a pipelined batch fails."""

    def __init__(self, index: int, command: str, cause: Exception) -> None:
        super().__init__(f"Command #{index} ({command}) failed: {cause}")
        self.index = index
        self.command = command
        self.cause = cause


class TTLVerificationError(StoreError):
    """Raised when a freshly written refresh token has no positive TTL."""

    def __init__(self, key: str, observed: int | None) -> None:
        super().__init__(f"Refresh token {key} has no positive TTL (observed={observed})")
        self.key = key
        self.observed = observed


# --------------------------------------------------------------------------- #
# Session semantics
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class RecordNotFoundError(ServiceError):
    """
    Raised when a refresh token record does not exist.

    :param user_id: Owner of the looked-up token.
    :type user_id: str
    :param record_id: Deterministic record identifier.
    :type record_id: str
    """

    user_id: str
    record_id: str

    def __str__(self) -> str:  # pragma: no cover
        return f"Refresh token not found for user {self.user_id}"


class RotationFailedError(ServiceError):
    """
    Raised when the replacement record could not be confirmed.

    The old token stays valid; the caller may retry with it.

    :param user_id: Owner of the token lineage.
    :param reason: Short description of what could not be confirmed.
    """

    retryable = True

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Refresh token rotation failed for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


@dataclass(slots=True)
class SecurityInconsistencyError(ServiceError):
    """
    Old record still present after a successful rotation.

    A lingering old token is a live, stealable credential. This type is
    attached to the rotation result and logged at CRITICAL; it does not fail
    the in-flight request because the new token is already valid.
    """

    user_id: str
    record_id: str
    attempts: int

    def __str__(self) -> str:  # pragma: no cover
        return (
            f"Retired refresh token {self.record_id} still present after "
            f"{self.attempts} delete attempts"
        )
