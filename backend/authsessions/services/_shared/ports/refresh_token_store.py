from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from authsessions.services._shared.errors import (
    RecordNotFoundError,
    RotationFailedError,
    SecurityInconsistencyError,
    StoreError,
)

log = logging.getLogger(__name__)

# Redis TTL sentinels, reused by every adapter.
TTL_MISSING = -2
TTL_NO_EXPIRY = -1


def hash_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in place of the raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def record_id_for(user_id: str, raw_token: str) -> str:
    """
    Derive the deterministic record identifier for ``(user_id, raw_token)``.

    The identifier doubles as the key suffix: ``refresh-token:{record_id}``.
    """
    return f"{user_id}:{hash_token(raw_token)}"


def _parse_ts(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid timestamp: {value!r}")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Persisted refresh token snapshot. Never mutated in place.

    :ivar record_id: ``"{user_id}:{token_hash}"``.
    :ivar user_id: Owner user id.
    :ivar created_at: Issue time (UTC).
    :ivar expires_at: Absolute expiry (UTC).
    :ivar device_label: Optional client/device description.
    """

    record_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    device_label: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }
        if self.device_label:
            payload["deviceLabel"] = self.device_label
        return payload

    @classmethod
    def from_payload(cls, record_id: str, payload: Any) -> RefreshTokenRecord:
        """
        Rebuild a record from its stored payload.

        :raises ValueError: When the payload is malformed or belongs to
            another user than the one encoded in ``record_id``.
        """
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not record_id.startswith(f"{user_id}:"):
            raise ValueError("payload userId does not match record id")
        label = payload.get("deviceLabel")
        return cls(
            record_id=record_id,
            user_id=user_id,
            created_at=_parse_ts(payload.get("createdAt")),
            expires_at=_parse_ts(payload.get("expiresAt")),
            device_label=label if isinstance(label, str) else None,
        )


@dataclass(frozen=True, slots=True)
class RotationResult:
    """
    Outcome of a completed rotation.

    :ivar record: The new, confirmed record.
    :ivar retired_record_id: Identifier of the record that was replaced.
    :ivar inconsistency: Set when the retired record could not be removed.
    """

    record: RefreshTokenRecord
    retired_record_id: str
    inconsistency: SecurityInconsistencyError | None = None


class RefreshTokenStore(Protocol):
    """
    Stateful store for refresh token records keyed by ``(user_id, token hash)``.

    Every record carries a positive TTL enforced by the store itself.
    Connectivity problems surface as :class:`StoreUnavailableError`, absence
    as :class:`RecordNotFoundError`; the two are never conflated.
    """

    #: How many times a retired record is deleted before reporting an inconsistency.
    retire_attempts: int = 3

    def store(
        self,
        user_id: str,
        raw_token: str,
        ttl_seconds: int,
        *,
        device_label: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Persist a new record and verify its TTL.

        :raises ValueError: If ``ttl_seconds`` is not positive.
        :raises TTLVerificationError: If the written key has no positive TTL.
        :raises StoreUnavailableError: On connectivity loss.
        """

    def validate(self, user_id: str, raw_token: str) -> RefreshTokenRecord:
        """
        Confirm connectivity, then fetch the record for ``raw_token``.

        :raises StoreUnavailableError: When the store cannot be reached.
        :raises RecordNotFoundError: When the record is absent or unreadable.
        """

    def revoke(self, user_id: str, raw_token: str) -> bool:
        """Delete the record. Idempotent. :returns: True if a key was removed."""

    def get_record(self, user_id: str, record_id: str) -> RefreshTokenRecord | None:
        """Fetch a record by identifier without a connectivity pre-check."""

    def exists(self, user_id: str, record_id: str) -> bool:
        """Return whether the key is present, readable or not."""

    def ttl(self, user_id: str, record_id: str) -> int:
        """Remaining TTL in seconds (``TTL_MISSING`` / ``TTL_NO_EXPIRY`` sentinels)."""

    def revoke_records(self, user_id: str, record_ids: Iterable[str]) -> int:
        """Delete several records in one batch. :returns: Number of keys removed."""

    def snapshot(
        self, user_id: str, record_ids: Sequence[str]
    ) -> list[tuple[RefreshTokenRecord | None, int]]:
        """
        Read each record together with its TTL, in ``record_ids`` order.

        Adapters backed by a network store answer in one round trip.
        """
        return [(self.get_record(user_id, rid), self.ttl(user_id, rid)) for rid in record_ids]

    def iter_ttls(self) -> Iterator[tuple[str, int]]:
        """Yield ``(record_id, ttl)`` for every stored refresh token."""

    def count_records(self) -> int:
        """Count all stored refresh tokens."""

    def is_available(self) -> bool:
        """Report whether the backing store is currently reachable."""

    def persistence_enabled(self) -> bool:
        """Report whether the backing store survives a restart."""

    def new_token(self) -> str:
        """Mint a new opaque refresh token (64 random bytes, URL-safe)."""
        return secrets.token_urlsafe(64)

    # ------------------------------------------------------------------ #
    # Rotation: write new, confirm, delete old, confirm
    # ------------------------------------------------------------------ #

    def rotate(
        self,
        user_id: str,
        old_raw_token: str,
        new_raw_token: str,
        ttl_seconds: int,
        *,
        device_label: str | None = None,
    ) -> RotationResult:
        """
        Replace ``old_raw_token`` with ``new_raw_token``.

        The new record is written and read back *before* the old one is
        touched. Any doubt about the new record aborts the rotation with the
        old token intact (fail-closed). Concurrent rotations of the same old
        token each mint their own record; deleting the old one twice is
        harmless.

        :raises RecordNotFoundError: If the old token is not valid.
        :raises StoreUnavailableError: If connectivity is lost before writing.
        :raises RotationFailedError: If the new record cannot be confirmed.
        """
        if old_raw_token == new_raw_token:
            raise ValueError("new refresh token must differ from the old one")

        old = self.validate(user_id, old_raw_token)
        new_id = record_id_for(user_id, new_raw_token)

        try:
            self.store(
                user_id,
                new_raw_token,
                ttl_seconds,
                device_label=device_label or old.device_label,
            )
            confirmed = self.get_record(user_id, new_id)
        except StoreError as exc:
            self._discard_candidate(user_id, new_id)
            raise RotationFailedError(user_id, str(exc)) from exc

        if confirmed is None:
            self._discard_candidate(user_id, new_id)
            raise RotationFailedError(user_id, "new record could not be read back")

        inconsistency = self._retire(user_id, old.record_id)
        return RotationResult(
            record=confirmed,
            retired_record_id=old.record_id,
            inconsistency=inconsistency,
        )

    def _discard_candidate(self, user_id: str, record_id: str) -> None:
        # Old token stays valid; an unconfirmed candidate must not.
        try:
            self.revoke_records(user_id, [record_id])
        except StoreError:
            log.warning(
                "rotation.candidate_cleanup_failed",
                extra={"user_id": user_id, "record_id": record_id},
            )

    def _retire(self, user_id: str, record_id: str) -> SecurityInconsistencyError | None:
        attempts = max(1, int(self.retire_attempts))
        for attempt in range(1, attempts + 1):
            try:
                self.revoke_records(user_id, [record_id])
                if not self.exists(user_id, record_id):
                    return None
            except StoreError as exc:
                log.warning(
                    "rotation.retire_failed attempt=%s error=%s",
                    attempt,
                    exc,
                    extra={"user_id": user_id, "record_id": record_id},
                )
            else:
                log.error(
                    "rotation.old_record_lingering attempt=%s",
                    attempt,
                    extra={"user_id": user_id, "record_id": record_id},
                )

        inconsistency = SecurityInconsistencyError(
            user_id=user_id, record_id=record_id, attempts=attempts
        )
        log.critical(
            "rotation.security_inconsistency %s",
            inconsistency,
            extra={"user_id": user_id, "record_id": record_id},
        )
        return inconsistency


def not_found(user_id: str, raw_token: str) -> RecordNotFoundError:
    """Build the not-found error for a raw token without leaking it."""
    return RecordNotFoundError(user_id=user_id, record_id=record_id_for(user_id, raw_token))
