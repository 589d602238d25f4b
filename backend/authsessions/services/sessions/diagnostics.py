from __future__ import annotations

import logging
from dataclasses import dataclass, field

from authsessions.services._shared.ports import (
    TTL_MISSING,
    TTL_NO_EXPIRY,
    RefreshTokenRecord,
    RefreshTokenStore,
    SessionRegistry,
    record_id_for,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Diagnostics:
    """
    Read-only snapshot of the session store.

    :ivar token_count: Refresh token records counted.
    :ivar per_token_ttl: Remaining TTL of each counted record.
    :ivar persistence_enabled: Whether the store survives a restart.
    :ivar backend: ``"redis"`` or ``"memory"``.
    :ivar store_available: Availability at the time of the snapshot.
    :ivar ttl_issues: Record ids with no expiry (a refresh token must always expire).
    """

    token_count: int
    per_token_ttl: list[int]
    persistence_enabled: bool
    backend: str
    store_available: bool
    ttl_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "tokenCount": self.token_count,
            "perTokenTTL": list(self.per_token_ttl),
            "persistenceEnabled": self.persistence_enabled,
            "backend": self.backend,
            "storeAvailable": self.store_available,
            "ttlIssues": list(self.ttl_issues),
        }


@dataclass(frozen=True, slots=True)
class TokenInspection:
    """Existence and TTL of one refresh token's key. Never carries the raw token."""

    exists: bool
    key: str
    ttl_seconds: int
    record: RefreshTokenRecord | None = None

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "exists": self.exists,
            "key": self.key,
            "ttlSeconds": self.ttl_seconds,
        }
        if self.record is not None:
            out["createdAt"] = self.record.created_at.isoformat()
            out["expiresAt"] = self.record.expires_at.isoformat()
            out["deviceLabel"] = self.record.device_label
        return out


class DiagnosticsReporter:
    """
    Introspection for operational tooling. Never writes to the store.

    :param tokens: Refresh token store.
    :param sessions: Per-user session index.
    :param backend: Name of the selected backend.
    :param key_prefix: Namespace used for key display.
    """

    def __init__(
        self,
        *,
        tokens: RefreshTokenStore,
        sessions: SessionRegistry,
        backend: str,
        key_prefix: str = "",
    ) -> None:
        self.tokens = tokens
        self.sessions = sessions
        self.backend = backend
        self.key_prefix = key_prefix

    def get_diagnostics(self, user_id: str | None = None) -> Diagnostics:
        """
        Count refresh tokens and collect their TTLs.

        :param user_id: When given, only the ids in that user's session set
            are inspected (without reconciling the set); otherwise every
            ``refresh-token:*`` key is scanned.
        """
        if user_id is not None:
            pairs = [
                (record_id, self.tokens.ttl(user_id, record_id))
                for record_id in self.sessions.session_ids(user_id)
            ]
            pairs = [(rid, ttl) for rid, ttl in pairs if ttl != TTL_MISSING]
        else:
            pairs = list(self.tokens.iter_ttls())

        issues = [rid for rid, ttl in pairs if ttl == TTL_NO_EXPIRY]
        if issues:
            log.critical(
                "diagnostics.ttl_missing count=%s",
                len(issues),
                extra={"user_id": user_id, "backend": self.backend},
            )

        return Diagnostics(
            token_count=len(pairs),
            per_token_ttl=[ttl for _, ttl in pairs],
            persistence_enabled=self.tokens.persistence_enabled(),
            backend=self.backend,
            store_available=self.tokens.is_available(),
            ttl_issues=issues,
        )

    def inspect_token(self, user_id: str, raw_token: str) -> TokenInspection:
        """Report whether the key for ``raw_token`` exists, and its TTL."""
        record_id = record_id_for(user_id, raw_token)
        ttl = self.tokens.ttl(user_id, record_id)
        record = self.tokens.get_record(user_id, record_id) if ttl != TTL_MISSING else None
        return TokenInspection(
            exists=ttl != TTL_MISSING,
            key=f"{self.key_prefix}refresh-token:{record_id}",
            ttl_seconds=ttl,
            record=record,
        )
