# comments in English; reST docstrings
from __future__ import annotations

import logging
from dataclasses import dataclass

from authsessions.infra.redis.connection import ConnectionManager, cmd
from authsessions.services._shared.ports import (
    TTL_MISSING,
    RefreshTokenStore,
    SessionDescriptor,
    SessionRegistry,
)

log = logging.getLogger(__name__)

SESSION_NAMESPACE = "session-set:"


@dataclass(slots=True)
class RedisSessionRegistry(SessionRegistry):
    """
    Per-user Redis set ``session-set:{user_id}`` of refresh token record ids.

    Records are resolved through ``tokens`` so payload decoding lives in one
    place. The set's own expiry follows the refresh token TTL.

    :param conn: Shared connection manager.
    :param tokens: Store owning the records referenced by the set.
    :param ttl_seconds: Expiry applied to the set on every addition.
    :param key_prefix: Optional namespace prepended to every key.
    """

    conn: ConnectionManager
    tokens: RefreshTokenStore
    ttl_seconds: int
    key_prefix: str = ""

    def _ku(self, user_id: str) -> str:
        return f"{self.key_prefix}{SESSION_NAMESPACE}{user_id}"

    def add_session(self, user_id: str, record_id: str) -> None:
        key = self._ku(user_id)
        self.conn.execute([cmd("SADD", key, record_id), cmd("EXPIRE", key, int(self.ttl_seconds))])

    def remove_session(self, user_id: str, record_id: str) -> None:
        self.conn.execute([cmd("SREM", self._ku(user_id), record_id)])

    def session_ids(self, user_id: str) -> list[str]:
        (members,) = self.conn.execute([cmd("SMEMBERS", self._ku(user_id))])
        return sorted(str(m) for m in members or ())

    def list_sessions(self, user_id: str) -> list[SessionDescriptor]:
        ids = self.session_ids(user_id)
        sessions: list[SessionDescriptor] = []
        stale: list[str] = []
        for record_id, (record, ttl) in zip(ids, self.tokens.snapshot(user_id, ids)):
            # TTL_MISSING: expired between the set read and the record read
            if record is None or record.is_expired() or ttl == TTL_MISSING:
                stale.append(record_id)
                continue
            sessions.append(
                SessionDescriptor(
                    record_id=record_id,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    device_label=record.device_label,
                    ttl_seconds=ttl,
                )
            )

        if stale:
            self.conn.execute([cmd("SREM", self._ku(user_id), *stale)])
            log.info("session_set.reconciled dropped=%s", len(stale), extra={"user_id": user_id})

        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    def revoke_all(self, user_id: str) -> int:
        ids = self.session_ids(user_id)
        deleted = self.tokens.revoke_records(user_id, ids)
        # Only the ids read above: one added meanwhile belongs to a newer login.
        if ids:
            self.conn.execute([cmd("SREM", self._ku(user_id), *ids)])
        log.info(
            "session_set.revoked_all sessions=%s deleted=%s",
            len(ids),
            deleted,
            extra={"user_id": user_id},
        )
        return deleted
