"""Tests for RotationProtocol: token store and session index kept in step."""

from __future__ import annotations

import logging

import pytest

from authsessions.infra.memory.fallback_store import FallbackStore
from authsessions.services._shared.errors import (
    RecordNotFoundError,
    RotationFailedError,
    StoreUnavailableError,
)
from authsessions.services._shared.ports import record_id_for
from authsessions.services.sessions import RotationProtocol, RotationState

TTL = 3600


class _FailingWrites(FallbackStore):
    def store(self, user_id, raw_token, ttl_seconds, *, device_label=None):
        if raw_token == "tok2":
            raise StoreUnavailableError("connection reset")
        return super().store(user_id, raw_token, ttl_seconds, device_label=device_label)


class _Unreachable(FallbackStore):
    def validate(self, user_id, raw_token):
        raise StoreUnavailableError()


class _StickyOldRecord(FallbackStore):
    """Deletes miss the ``tok1`` record while ``sticky`` is set."""

    sticky = True

    def revoke_records(self, user_id, record_ids):
        if self.sticky:
            record_ids = [r for r in record_ids if r != record_id_for("alice", "tok1")]
        return super().revoke_records(user_id, record_ids)


class _LogoutAllDuringWrite(FallbackStore):
    """Runs ``revoke_all`` right before the ``tok2`` record is written."""

    def store(self, user_id, raw_token, ttl_seconds, *, device_label=None):
        if raw_token == "tok2":
            self.revoke_all(user_id)
        return super().store(user_id, raw_token, ttl_seconds, device_label=device_label)


def _seed(store: FallbackStore, raw: str = "tok1") -> str:
    record_id = record_id_for("alice", raw)
    store.add_session("alice", record_id)
    store.store("alice", raw, TTL, device_label="laptop")
    return record_id


def _protocol(store: FallbackStore) -> RotationProtocol:
    return RotationProtocol(tokens=store, sessions=store, ttl_seconds=TTL)


def test_rotation_moves_the_session_to_the_new_record(fallback):
    old_id = _seed(fallback)

    outcome = _protocol(fallback).rotate("alice", "tok1", "tok2")

    new_id = record_id_for("alice", "tok2")
    assert outcome.state is RotationState.RETIRED
    assert outcome.refresh_token == "tok2"
    assert outcome.retired_record_id == old_id
    assert outcome.record.device_label == "laptop"
    assert fallback.session_ids("alice") == [new_id]


def test_rotation_mints_a_token_when_none_is_given(fallback):
    _seed(fallback)

    outcome = _protocol(fallback).rotate("alice", "tok1")

    assert outcome.refresh_token != "tok1"
    assert fallback.validate("alice", outcome.refresh_token).user_id == "alice"


def test_unknown_token_drops_both_ids(fallback):
    fallback.add_session("alice", record_id_for("alice", "ghost"))

    with pytest.raises(RecordNotFoundError):
        _protocol(fallback).rotate("alice", "ghost", "tok2")

    assert fallback.session_ids("alice") == []


def test_failed_write_keeps_old_session(clock, caplog):
    store = _FailingWrites(clock=clock)
    old_id = _seed(store)

    with caplog.at_level(logging.WARNING, logger="authsessions.services.sessions.rotation"):
        with pytest.raises(RotationFailedError):
            _protocol(store).rotate("alice", "tok1", "tok2")

    assert store.session_ids("alice") == [old_id]
    assert store.validate("alice", "tok1").user_id == "alice"
    failed = [r for r in caplog.records if getattr(r, "state", None) == "rotation_failed"]
    assert failed and failed[0].levelno == logging.WARNING


def test_unreachable_store_changes_nothing(clock):
    store = _Unreachable(clock=clock)
    old_id = _seed(store)

    with pytest.raises(StoreUnavailableError):
        _protocol(store).rotate("alice", "tok1", "tok2")

    assert store.session_ids("alice") == [old_id]
    assert store.exists("alice", old_id) is True


def test_second_rotation_with_retired_token_fails(fallback):
    _seed(fallback)
    protocol = _protocol(fallback)
    protocol.rotate("alice", "tok1", "tok2")

    with pytest.raises(RecordNotFoundError):
        protocol.rotate("alice", "tok1", "tok3")

    assert fallback.session_ids("alice") == [record_id_for("alice", "tok2")]


def test_lingering_old_record_stays_indexed_for_revoke_all(clock):
    store = _StickyOldRecord(clock=clock, retire_attempts=1)
    old_id = _seed(store)

    outcome = _protocol(store).rotate("alice", "tok1", "tok2")

    assert outcome.inconsistency is not None
    assert store.session_ids("alice") == sorted([old_id, record_id_for("alice", "tok2")])

    store.sticky = False
    assert store.revoke_all("alice") == 2
    assert store.exists("alice", old_id) is False
    with pytest.raises(RecordNotFoundError):
        store.validate("alice", "tok1")


def test_new_record_is_reindexed_after_concurrent_logout_all(clock):
    store = _LogoutAllDuringWrite(clock=clock)
    _seed(store)

    _protocol(store).rotate("alice", "tok1", "tok2")

    new_id = record_id_for("alice", "tok2")
    assert store.session_ids("alice") == [new_id]
    store.revoke_all("alice")
    assert store.exists("alice", new_id) is False


def test_explicit_zero_ttl_is_rejected_before_anything_changes(fallback):
    old_id = _seed(fallback)

    with pytest.raises(ValueError):
        _protocol(fallback).rotate("alice", "tok1", "tok2", ttl_seconds=0)

    assert fallback.session_ids("alice") == [old_id]
    assert fallback.validate("alice", "tok1").user_id == "alice"
