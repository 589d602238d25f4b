from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from authsessions.services._shared.ports import (
    TTL_MISSING,
    RefreshTokenRecord,
    RefreshTokenStore,
    SessionDescriptor,
    SessionRegistry,
    record_id_for,
)
from authsessions.services._shared.ports.refresh_token_store import not_found

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class _Entry:
    record: RefreshTokenRecord
    deadline: datetime


class FallbackStore(RefreshTokenStore, SessionRegistry):
    """
    Process-local refresh token store and session registry.

    Used when Redis cannot be reached at startup, and in unit tests.

    .. warning::
       Data lives in this process only: it is lost on restart and is not
       shared with other workers or instances.

    :param clock: Returns the current aware UTC datetime; injectable for tests.
    :param session_ttl: Expiry applied to a user's session set on each addition.
    :param retire_attempts: Deletes attempted on a retired record.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        session_ttl: int | None = None,
        retire_attempts: int = 3,
    ) -> None:
        self._clock = clock
        self._session_ttl = session_ttl
        self.retire_attempts = retire_attempts
        self._records: dict[str, _Entry] = {}
        self._sets: dict[str, set[str]] = {}
        self._set_deadlines: dict[str, datetime] = {}
        self._lock = threading.RLock()

    # ------------------------- helpers -------------------------

    def _live(self, record_id: str) -> _Entry | None:
        """Return the entry if present and unexpired, purging it otherwise. Lock held."""
        entry = self._records.get(record_id)
        if entry is None:
            return None
        if entry.deadline <= self._clock():
            del self._records[record_id]
            return None
        return entry

    def _members(self, user_id: str) -> set[str]:
        deadline = self._set_deadlines.get(user_id)
        if deadline is not None and deadline <= self._clock():
            self._sets.pop(user_id, None)
            self._set_deadlines.pop(user_id, None)
        return self._sets.get(user_id, set())

    # ---------------------- token store ------------------------

    def store(
        self,
        user_id: str,
        raw_token: str,
        ttl_seconds: int,
        *,
        device_label: str | None = None,
    ) -> RefreshTokenRecord:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            now = self._clock()
            record = RefreshTokenRecord(
                record_id=record_id_for(user_id, raw_token),
                user_id=user_id,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
                device_label=device_label,
            )
            self._records[record.record_id] = _Entry(record, record.expires_at)
        log.info(
            "refresh_token.stored ttl=%s",
            ttl_seconds,
            extra={"user_id": user_id, "record_id": record.record_id, "backend": "memory"},
        )
        return record

    def validate(self, user_id: str, raw_token: str) -> RefreshTokenRecord:
        record = self.get_record(user_id, record_id_for(user_id, raw_token))
        if record is None:
            raise not_found(user_id, raw_token)
        return record

    def revoke(self, user_id: str, raw_token: str) -> bool:
        return self.revoke_records(user_id, [record_id_for(user_id, raw_token)]) > 0

    def get_record(self, user_id: str, record_id: str) -> RefreshTokenRecord | None:
        with self._lock:
            entry = self._live(record_id)
            if entry is None or entry.record.user_id != user_id:
                return None
            return entry.record

    def exists(self, user_id: str, record_id: str) -> bool:
        with self._lock:
            return self._live(record_id) is not None

    def ttl(self, user_id: str, record_id: str) -> int:
        with self._lock:
            entry = self._live(record_id)
            if entry is None:
                return TTL_MISSING
            return max(1, math.ceil((entry.deadline - self._clock()).total_seconds()))

    def revoke_records(self, user_id: str, record_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for record_id in record_ids:
                if self._records.pop(record_id, None) is not None:
                    removed += 1
        return removed

    def iter_ttls(self) -> Iterator[tuple[str, int]]:
        with self._lock:
            ids = list(self._records)
        for record_id in ids:
            ttl = self.ttl("", record_id)
            if ttl != TTL_MISSING:
                yield record_id, ttl

    def count_records(self) -> int:
        return sum(1 for _ in self.iter_ttls())

    def is_available(self) -> bool:
        return True

    def persistence_enabled(self) -> bool:
        return False

    # --------------------- session registry --------------------

    def add_session(self, user_id: str, record_id: str) -> None:
        with self._lock:
            self._members(user_id)
            self._sets.setdefault(user_id, set()).add(record_id)
            if self._session_ttl:
                self._set_deadlines[user_id] = self._clock() + timedelta(seconds=self._session_ttl)

    def remove_session(self, user_id: str, record_id: str) -> None:
        with self._lock:
            self._members(user_id).discard(record_id)

    def session_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return sorted(self._members(user_id))

    def list_sessions(self, user_id: str) -> list[SessionDescriptor]:
        with self._lock:
            members = self._members(user_id)
            sessions: list[SessionDescriptor] = []
            for record_id in sorted(members):
                record = self.get_record(user_id, record_id)
                if record is None:
                    members.discard(record_id)
                    continue
                sessions.append(
                    SessionDescriptor(
                        record_id=record_id,
                        created_at=record.created_at,
                        expires_at=record.expires_at,
                        device_label=record.device_label,
                        ttl_seconds=self.ttl(user_id, record_id),
                    )
                )
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    def revoke_all(self, user_id: str) -> int:
        with self._lock:
            ids = list(self._members(user_id))
            deleted = self.revoke_records(user_id, ids)
            self._sets.pop(user_id, None)
            self._set_deadlines.pop(user_id, None)
        log.info(
            "session_set.revoked_all deleted=%s",
            deleted,
            extra={"user_id": user_id, "backend": "memory"},
        )
        return deleted
