from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class SessionDescriptor:
    """
    Read-model for one active session (one refresh token record).

    :ivar record_id: Record identifier (``"{user_id}:{token_hash}"``).
    :ivar created_at: When the record was issued.
    :ivar expires_at: Absolute expiry (UTC).
    :ivar device_label: Optional client/device description.
    :ivar ttl_seconds: Remaining TTL reported by the store.
    """

    record_id: str
    created_at: datetime
    expires_at: datetime
    device_label: str | None
    ttl_seconds: int


class SessionRegistry(Protocol):
    """
    Per-user index of active refresh token record identifiers.

    The index is eventually consistent with the records themselves: an id
    may outlive its record briefly, and is dropped the next time the
    session list is read.
    """

    def add_session(self, user_id: str, record_id: str) -> None:
        """Add ``record_id`` to the user's set. Idempotent."""

    def remove_session(self, user_id: str, record_id: str) -> None:
        """Remove ``record_id`` from the user's set. Idempotent."""

    def list_sessions(self, user_id: str) -> list[SessionDescriptor]:
        """
        Resolve the user's sessions, most recently created first.

        Ids whose record no longer exists are dropped from the set.
        """

    def revoke_all(self, user_id: str) -> int:
        """
        Delete every referenced record, then clear the set.

        :returns: Number of records deleted.
        :raises StoreUnavailableError: If any step fails; nothing is reported
            as done and the call may be retried.
        """

    def session_ids(self, user_id: str) -> list[str]:
        """Raw set membership, without reconciliation."""
