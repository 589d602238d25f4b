"""
Unit tests for RedisRefreshTokenStore using fakeredis.

These tests exercise the main flows:
- store + validate (round trip, positive TTL)
- revoke idempotence
- rotate (happy path, unconfirmed write, lingering old record)
- connectivity loss vs. not found
- unreadable payloads
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta

import fakeredis
import pytest

from authsessions.infra.redis.connection import ConnectionManager
from authsessions.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from authsessions.services._shared.errors import (
    RecordNotFoundError,
    RotationFailedError,
    StoreUnavailableError,
    TTLVerificationError,
)
from authsessions.services._shared.ports import hash_token, record_id_for

TTL = 604800


def _key(user_id: str, raw: str) -> str:
    return f"refresh-token:{user_id}:{hash_token(raw)}"


# ------------------------------ Doubles ----------------------------------- #


class _UnconfirmedWrites(RedisRefreshTokenStore):
    """Store whose reads never see the record for ``hidden``."""

    hidden = record_id_for("alice", "tok2")

    def get_record(self, user_id, record_id):
        if record_id == self.hidden:
            return None
        return super().get_record(user_id, record_id)


class _WriteDropsConnection(RedisRefreshTokenStore):
    """Store whose writes fail as if the connection dropped mid-rotation."""

    def store(self, user_id, raw_token, ttl_seconds, *, device_label=None):
        raise StoreUnavailableError("connection reset")


class _StickyOldRecord(RedisRefreshTokenStore):
    """Store whose deletes silently miss ``sticky``."""

    sticky = record_id_for("alice", "tok1")

    def revoke_records(self, user_id, record_ids):
        ids = [rid for rid in record_ids if rid != self.sticky]
        return super().revoke_records(user_id, ids)


class _TTLDropping(ConnectionManager):
    """Connection reporting ``-1`` for the first ``bad_reads`` TTL queries."""

    bad_reads = 1

    def execute(self, commands, *, timeout=None):
        results = super().execute(commands, timeout=timeout)
        out = []
        for command, result in zip(commands, results):
            if command.name == "TTL" and self.bad_reads > 0:
                self.bad_reads -= 1
                result = -1
            out.append(result)
        return out


# -------------------------------- Tests ----------------------------------- #


def test_store_then_validate_round_trip(redis_store):
    """A stored token validates and carries a positive TTL."""
    record = redis_store.store("alice", "tok1", TTL, device_label="Firefox")

    found = redis_store.validate("alice", "tok1")
    assert found.user_id == "alice"
    assert found.record_id == record.record_id
    assert found.device_label == "Firefox"
    assert 0 < redis_store.ttl("alice", record.record_id) <= TTL


def test_store_writes_hashed_key_and_payload(redis_store, fake_redis):
    redis_store.store("alice", "tok1", 60)

    key = _key("alice", "tok1")
    assert 0 < fake_redis.ttl(key) <= 60
    payload = json.loads(fake_redis.get(key))
    assert payload["userId"] == "alice"
    assert set(payload) >= {"userId", "createdAt", "expiresAt"}
    # raw token never stored
    assert "tok1" not in fake_redis.get(key)


@pytest.mark.parametrize("ttl", [0, -5])
def test_store_rejects_non_positive_ttl(redis_store, ttl):
    with pytest.raises(ValueError):
        redis_store.store("alice", "tok1", ttl)


def test_store_reapplies_missing_ttl(fake_server, fake_redis, caplog):
    conn = _TTLDropping(lambda t: fakeredis.FakeRedis(server=fake_server, decode_responses=True))
    store = RedisRefreshTokenStore(conn=conn)

    with caplog.at_level(logging.CRITICAL):
        store.store("alice", "tok1", 120)

    assert 0 < fake_redis.ttl(_key("alice", "tok1")) <= 120
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_store_fails_when_ttl_cannot_be_verified(fake_server, fake_redis):
    conn = _TTLDropping(lambda t: fakeredis.FakeRedis(server=fake_server, decode_responses=True))
    conn.bad_reads = 2
    store = RedisRefreshTokenStore(conn=conn)

    with pytest.raises(TTLVerificationError):
        store.store("alice", "tok1", 120)

    # never left behind without a TTL
    assert fake_redis.exists(_key("alice", "tok1")) == 0


def test_validate_unknown_token_is_not_found(redis_store):
    with pytest.raises(RecordNotFoundError) as info:
        redis_store.validate("alice", "nope")
    assert info.value.record_id == record_id_for("alice", "nope")


def test_validate_other_users_token_is_not_found(redis_store):
    redis_store.store("alice", "tok1", TTL)
    with pytest.raises(RecordNotFoundError):
        redis_store.validate("bob", "tok1")


def test_validate_during_connection_drop_is_unavailable(redis_store, fake_server):
    """Connectivity loss is never reported as NotFound."""
    redis_store.store("alice", "tok1", TTL)
    fake_server.connected = False

    with pytest.raises(StoreUnavailableError):
        redis_store.validate("alice", "tok1")

    fake_server.connected = True
    assert redis_store.validate("alice", "tok1").user_id == "alice"


def test_unreadable_payload_is_not_found(redis_store, fake_redis, caplog):
    fake_redis.set(_key("alice", "tok1"), "{not json", ex=60)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(RecordNotFoundError):
            redis_store.validate("alice", "tok1")
    assert any("unreadable_payload" in r.getMessage() for r in caplog.records)


def test_payload_for_another_user_is_not_found(redis_store, fake_redis):
    now = datetime.now(UTC)
    payload = {
        "userId": "mallory",
        "createdAt": now.isoformat(),
        "expiresAt": (now + timedelta(hours=1)).isoformat(),
    }
    fake_redis.set(_key("alice", "tok1"), json.dumps(payload), ex=60)

    with pytest.raises(RecordNotFoundError):
        redis_store.validate("alice", "tok1")


def test_expired_payload_is_deleted_and_not_found(redis_store, fake_redis):
    now = datetime.now(UTC)
    payload = {
        "userId": "alice",
        "createdAt": (now - timedelta(hours=2)).isoformat(),
        "expiresAt": (now - timedelta(hours=1)).isoformat().replace("+00:00", "Z"),
    }
    fake_redis.set(_key("alice", "tok1"), json.dumps(payload), ex=60)

    with pytest.raises(RecordNotFoundError):
        redis_store.validate("alice", "tok1")
    assert fake_redis.exists(_key("alice", "tok1")) == 0


def test_revoke_is_idempotent(redis_store):
    redis_store.store("alice", "tok1", TTL)

    assert redis_store.revoke("alice", "tok1") is True
    assert redis_store.revoke("alice", "tok1") is False  # no error
    with pytest.raises(RecordNotFoundError):
        redis_store.validate("alice", "tok1")


def test_rotate_happy_path(redis_store):
    """Old token gone, new token valid."""
    redis_store.store("alice", "tok1", TTL, device_label="phone")

    result = redis_store.rotate("alice", "tok1", "tok2", TTL)

    assert result.retired_record_id == record_id_for("alice", "tok1")
    assert result.inconsistency is None
    assert result.record.device_label == "phone"
    with pytest.raises(RecordNotFoundError):
        redis_store.validate("alice", "tok1")
    assert redis_store.validate("alice", "tok2").user_id == "alice"


def test_rotate_unconfirmed_write_keeps_old_token(connection):
    """Unconfirmed new record aborts with the old token intact."""
    store = _UnconfirmedWrites(conn=connection)
    store.store("alice", "tok1", TTL)

    with pytest.raises(RotationFailedError):
        store.rotate("alice", "tok1", "tok2", TTL)

    assert store.validate("alice", "tok1").user_id == "alice"
    with pytest.raises(RecordNotFoundError):
        RedisRefreshTokenStore(conn=connection).validate("alice", "tok2")


def test_rotate_write_failure_keeps_old_token(connection):
    store = _WriteDropsConnection(conn=connection)
    RedisRefreshTokenStore(conn=connection).store("alice", "tok1", TTL)

    with pytest.raises(RotationFailedError) as info:
        store.rotate("alice", "tok1", "tok2", TTL)

    assert info.value.retryable is True
    assert store.validate("alice", "tok1").user_id == "alice"


def test_rotate_unknown_old_token_is_not_found(redis_store, fake_redis):
    with pytest.raises(RecordNotFoundError):
        redis_store.rotate("alice", "ghost", "tok2", TTL)
    assert fake_redis.exists(_key("alice", "tok2")) == 0


def test_rotate_during_connection_drop_is_unavailable(redis_store, fake_server):
    redis_store.store("alice", "tok1", TTL)
    fake_server.connected = False

    with pytest.raises(StoreUnavailableError):
        redis_store.rotate("alice", "tok1", "tok2", TTL)

    fake_server.connected = True
    assert redis_store.validate("alice", "tok1").user_id == "alice"


def test_rotate_rejects_identical_tokens(redis_store):
    with pytest.raises(ValueError):
        redis_store.rotate("alice", "tok1", "tok1", TTL)


def test_rotate_reports_lingering_old_record(connection, caplog):
    store = _StickyOldRecord(conn=connection, retire_attempts=2)
    store.store("alice", "tok1", TTL)

    with caplog.at_level(logging.WARNING):
        result = store.rotate("alice", "tok1", "tok2", TTL)

    # The call still succeeds: the new token is valid
    assert store.validate("alice", "tok2").user_id == "alice"
    assert result.inconsistency is not None
    assert result.inconsistency.attempts == 2
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_concurrent_rotations_of_same_old_token_both_succeed(redis_store):
    redis_store.store("alice", "tok1", TTL)

    first = redis_store.rotate("alice", "tok1", "tok2", TTL)
    # second rotation arrives late: the old token is already retired
    with pytest.raises(RecordNotFoundError):
        redis_store.rotate("alice", "tok1", "tok3", TTL)

    assert redis_store.validate("alice", "tok2").record_id == first.record.record_id


def test_iter_ttls_and_count(redis_store):
    for raw in ("a" * 20, "b" * 20, "c" * 20):
        redis_store.store("alice", raw, 100)

    ttls = dict(redis_store.iter_ttls())
    assert redis_store.count_records() == 3
    assert set(ttls) == {record_id_for("alice", raw) for raw in ("a" * 20, "b" * 20, "c" * 20)}
    assert all(0 < ttl <= 100 for ttl in ttls.values())


def test_key_prefix_namespaces_every_key(connection, fake_redis):
    store = RedisRefreshTokenStore(conn=connection, key_prefix="auth:")
    store.store("alice", "tok1", 60)

    assert fake_redis.exists(f"auth:{_key('alice', 'tok1')}") == 1
    assert fake_redis.exists(_key("alice", "tok1")) == 0
    assert [rid for rid, _ in store.iter_ttls()] == [record_id_for("alice", "tok1")]


def test_persistence_reported_from_config(redis_store, connection, monkeypatch):
    monkeypatch.setattr(connection, "persistence_info", lambda: {"save": "", "appendonly": "yes"})
    assert redis_store.persistence_enabled() is True

    monkeypatch.setattr(connection, "persistence_info", lambda: {"save": "", "appendonly": "no"})
    assert redis_store.persistence_enabled() is False

    monkeypatch.setattr(connection, "persistence_info", lambda: None)
    assert redis_store.persistence_enabled() is False


def test_new_token_is_url_safe_and_unique(redis_store):
    tokens = {redis_store.new_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(t) >= 80 for t in tokens)
