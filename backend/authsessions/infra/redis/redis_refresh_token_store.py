# comments in English; reST docstrings
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from authsessions.infra.redis.connection import ConnectionManager, cmd
from authsessions.services._shared.errors import StoreError, StoreUnavailableError, TTLVerificationError
from authsessions.services._shared.ports import RefreshTokenRecord, RefreshTokenStore, record_id_for
from authsessions.services._shared.ports.refresh_token_store import not_found

log = logging.getLogger(__name__)

TOKEN_NAMESPACE = "refresh-token:"
_TTL_BATCH = 100


@dataclass(slots=True)
class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh token store.

    One string key per record, ``refresh-token:{user_id}:{sha256(token)}``,
    holding a JSON payload and expiring through Redis' own TTL.

    :param conn: Shared connection manager (already constructed).
    :param key_prefix: Optional namespace prepended to every key.
    :param retire_attempts: Deletes attempted on a retired record.
    """

    conn: ConnectionManager
    key_prefix: str = ""
    retire_attempts: int = 3

    # -------------------- helpers --------------------

    def _k(self, record_id: str) -> str:
        return f"{self.key_prefix}{TOKEN_NAMESPACE}{record_id}"

    def _record_id_from_key(self, key: str) -> str:
        return key[len(self.key_prefix) + len(TOKEN_NAMESPACE) :]

    @staticmethod
    def _decode(record_id: str, raw: str | None) -> RefreshTokenRecord | None:
        if raw is None:
            return None
        try:
            return RefreshTokenRecord.from_payload(record_id, json.loads(raw))
        except ValueError as exc:  # json.JSONDecodeError is a ValueError
            log.warning(
                "refresh_token.unreadable_payload error=%s",
                exc,
                extra={"record_id": record_id},
            )
            return None

    # -------------------- API ------------------------

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

        now = datetime.now(UTC)
        record = RefreshTokenRecord(
            record_id=record_id_for(user_id, raw_token),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            device_label=device_label,
        )
        key = self._k(record.record_id)
        payload = json.dumps(record.to_payload())

        _, observed = self.conn.execute(
            [cmd("SET", key, payload, "EX", int(ttl_seconds)), cmd("TTL", key)]
        )
        if int(observed) <= 0:
            log.critical(
                "refresh_token.ttl_missing observed=%s; re-applying",
                observed,
                extra={"user_id": user_id, "record_id": record.record_id},
            )
            _, observed = self.conn.execute([cmd("EXPIRE", key, int(ttl_seconds)), cmd("TTL", key)])
            if int(observed) <= 0:
                try:
                    self.conn.execute([cmd("DEL", key)])
                finally:
                    log.critical(
                        "refresh_token.ttl_unrecoverable observed=%s",
                        observed,
                        extra={"user_id": user_id, "record_id": record.record_id},
                    )
                raise TTLVerificationError(key, int(observed))

        log.info(
            "refresh_token.stored ttl=%s",
            observed,
            extra={"user_id": user_id, "record_id": record.record_id},
        )
        return record

    def validate(self, user_id: str, raw_token: str) -> RefreshTokenRecord:
        if not self.conn.ping():
            raise StoreUnavailableError("Session store unavailable: ping failed")

        record_id = record_id_for(user_id, raw_token)
        key = self._k(record_id)
        (raw,) = self.conn.execute([cmd("GET", key)])
        record = self._decode(record_id, raw)
        if record is None:
            log.warning(
                "refresh_token.not_found",
                extra={"user_id": user_id, "record_id": record_id},
            )
            raise not_found(user_id, raw_token)

        if record.is_expired():
            # Redis has not expired it yet; the payload says otherwise.
            self.conn.execute([cmd("DEL", key)])
            log.warning(
                "refresh_token.expired_payload",
                extra={"user_id": user_id, "record_id": record_id},
            )
            raise not_found(user_id, raw_token)
        return record

    def revoke(self, user_id: str, raw_token: str) -> bool:
        return self.revoke_records(user_id, [record_id_for(user_id, raw_token)]) > 0

    def get_record(self, user_id: str, record_id: str) -> RefreshTokenRecord | None:
        (raw,) = self.conn.execute([cmd("GET", self._k(record_id))])
        return self._decode(record_id, raw)

    def exists(self, user_id: str, record_id: str) -> bool:
        (n,) = self.conn.execute([cmd("EXISTS", self._k(record_id))])
        return int(n) > 0

    def ttl(self, user_id: str, record_id: str) -> int:
        (value,) = self.conn.execute([cmd("TTL", self._k(record_id))])
        return int(value)

    def snapshot(
        self, user_id: str, record_ids: Sequence[str]
    ) -> list[tuple[RefreshTokenRecord | None, int]]:
        if not record_ids:
            return []
        batch = []
        for rid in record_ids:
            key = self._k(rid)
            batch += [cmd("GET", key), cmd("TTL", key)]
        results = self.conn.execute(batch)
        return [
            (self._decode(rid, results[2 * i]), int(results[2 * i + 1]))
            for i, rid in enumerate(record_ids)
        ]

    def revoke_records(self, user_id: str, record_ids: Iterable[str]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        results = self.conn.execute([cmd("DEL", self._k(rid)) for rid in ids])
        removed = sum(int(n) for n in results)
        log.info(
            "refresh_token.revoked requested=%s removed=%s",
            len(ids),
            removed,
            extra={"user_id": user_id},
        )
        return removed

    def iter_ttls(self) -> Iterator[tuple[str, int]]:
        keys = list(self.conn.scan_keys(f"{self.key_prefix}{TOKEN_NAMESPACE}*"))
        for start in range(0, len(keys), _TTL_BATCH):
            chunk = keys[start : start + _TTL_BATCH]
            ttls = self.conn.execute([cmd("TTL", key) for key in chunk])
            for key, value in zip(chunk, ttls):
                yield self._record_id_from_key(key), int(value)

    def count_records(self) -> int:
        return sum(1 for _ in self.conn.scan_keys(f"{self.key_prefix}{TOKEN_NAMESPACE}*"))

    def is_available(self) -> bool:
        return self.conn.is_available()

    def persistence_enabled(self) -> bool:
        try:
            info = self.conn.persistence_info()
        except StoreError:
            return False
        if not info:
            return False
        return info.get("appendonly", "no") == "yes" or bool(info.get("save", "").strip())
