"""Unit tests for AuthService with the stub token provider and fallback store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from authsessions.core import errors as api_errors
from authsessions.infra.memory.fallback_store import FallbackStore
from authsessions.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from authsessions.infra.redis.redis_session_registry import RedisSessionRegistry
from authsessions.services import AuthService, AuthTokenConfig, ServiceContext
from authsessions.services._shared.errors import (
    BatchMismatchError,
    RecordNotFoundError,
    RotationFailedError,
    ServiceError,
    StoreUnavailableError,
)
from authsessions.services._shared.ports import StubTokenProvider, record_id_for


def _service_stub() -> AuthService:
    return _service(FallbackStore())


def _service(store, **cfg) -> AuthService:
    return AuthService(
        token_provider=StubTokenProvider(),
        refresh_store=store,
        session_registry=store,
        token_cfg=AuthTokenConfig(**cfg),
    )


def test_issue_tokens_creates_an_indexed_session(fallback):
    svc = _service(fallback)

    pair = svc.issue_tokens("alice", device_label="laptop")

    assert pair.access_token.startswith("access.alice.")
    assert pair.expires_in == 900
    assert fallback.validate("alice", pair.refresh_token).device_label == "laptop"
    assert fallback.session_ids("alice") == [record_id_for("alice", pair.refresh_token)]


def test_issue_uses_context_device_label(fallback):
    svc = AuthService(
        token_provider=StubTokenProvider(),
        refresh_store=fallback,
        session_registry=fallback,
        ctx=ServiceContext(actor_id="alice", device_label="cli"),
    )
    pair = svc.issue_tokens("alice")
    assert fallback.validate("alice", pair.refresh_token).device_label == "cli"


def test_refresh_rotates_the_refresh_token(fallback):
    svc = _service(fallback)
    first = svc.issue_tokens("alice")

    second = svc.refresh("alice", first.refresh_token)

    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    with pytest.raises(RecordNotFoundError):
        svc.refresh("alice", first.refresh_token)
    assert [s.record_id for s in svc.list_sessions("alice")] == [
        record_id_for("alice", second.refresh_token)
    ]


def test_refresh_token_lifetime_follows_config(fallback):
    svc = _service(fallback, refresh_expires=timedelta(hours=1))
    pair = svc.issue_tokens("alice")

    (session,) = svc.list_sessions("alice")
    assert session.ttl_seconds <= 3600
    assert session.record_id == record_id_for("alice", pair.refresh_token)


def test_logout_revokes_one_session(fallback):
    svc = _service(fallback)
    keep = svc.issue_tokens("alice")
    drop = svc.issue_tokens("alice")

    svc.logout("alice", drop.refresh_token)
    svc.logout("alice", drop.refresh_token)  # idempotent

    assert [s.record_id for s in svc.list_sessions("alice")] == [
        record_id_for("alice", keep.refresh_token)
    ]


def test_logout_all_revokes_every_session(fallback):
    svc = _service(fallback)
    pairs = [svc.issue_tokens("alice") for _ in range(3)]

    assert svc.logout_all("alice") == 3

    for pair in pairs:
        with pytest.raises(RecordNotFoundError):
            svc.refresh("alice", pair.refresh_token)


def test_session_cap_evicts_oldest(fallback):
    svc = _service(fallback, max_sessions=2)
    oldest = svc.issue_tokens("alice")
    middle = svc.issue_tokens("alice")
    newest = svc.issue_tokens("alice")

    ids = [s.record_id for s in svc.list_sessions("alice")]

    assert ids == [
        record_id_for("alice", newest.refresh_token),
        record_id_for("alice", middle.refresh_token),
    ]
    with pytest.raises(RecordNotFoundError):
        fallback.validate("alice", oldest.refresh_token)


def test_session_cap_disabled(fallback):
    svc = _service(fallback, max_sessions=0)
    for _ in range(7):
        svc.issue_tokens("alice")
    assert len(svc.list_sessions("alice")) == 7


def test_refresh_during_redis_drop_is_unavailable_not_logout(
    redis_store, connection, fake_server
):
    registry = RedisSessionRegistry(conn=connection, tokens=redis_store, ttl_seconds=3600)
    svc = AuthService(
        token_provider=StubTokenProvider(),
        refresh_store=redis_store,
        session_registry=registry,
    )
    pair = svc.issue_tokens("alice")
    fake_server.connected = False

    with pytest.raises(StoreUnavailableError):
        svc.refresh("alice", pair.refresh_token)

    fake_server.connected = True
    assert svc.refresh("alice", pair.refresh_token).refresh_token != pair.refresh_token


def test_login_racing_logout_all_stays_revocable(connection):
    registry: RedisSessionRegistry

    class RacingStore(RedisRefreshTokenStore):
        def store(self, user_id, raw_token, ttl_seconds, *, device_label=None):
            registry.revoke_all(user_id)
            return super().store(user_id, raw_token, ttl_seconds, device_label=device_label)

    store = RacingStore(conn=connection)
    registry = RedisSessionRegistry(conn=connection, tokens=store, ttl_seconds=3600)
    svc = AuthService(
        token_provider=StubTokenProvider(),
        refresh_store=store,
        session_registry=registry,
    )

    pair = svc.issue_tokens("alice")

    record_id = record_id_for("alice", pair.refresh_token)
    assert registry.session_ids("alice") == [record_id]
    registry.revoke_all("alice")
    assert store.exists("alice", record_id) is False


# ------------------------ Error translation -------------------------------- #


@pytest.mark.parametrize(
    "exc",
    [
        StoreUnavailableError(),
        RotationFailedError("alice", "unconfirmed"),
        BatchMismatchError(2, 1),
    ],
)
def test_store_failures_translate_to_retryable_503(exc):
    out = _service_stub().translate_exceptions(exc)

    assert isinstance(out, api_errors.ServiceUnavailable)
    assert out.status_code == 503
    assert out.details == {"retryable": True}
    assert "Retry-After" in out.headers


def test_not_found_translates_to_401():
    out = _service_stub().translate_exceptions(RecordNotFoundError("alice", "alice:x"))
    assert isinstance(out, api_errors.Unauthorized)
    assert out.status_code == 401


def test_other_service_errors_translate_to_400():
    out = _service_stub().translate_exceptions(ServiceError("nope"))
    assert out.status_code == 400
    assert out.code == "bad_request"


def test_unknown_errors_pass_through():
    exc = KeyError("x")
    assert _service_stub().translate_exceptions(exc) is exc


# --------------------------- Access tokens --------------------------------- #


def test_stub_access_tokens_expire(freeze_time):
    provider = StubTokenProvider()
    with freeze_time("2024-01-01 00:00:00"):
        token = provider.create_access_token(identity="alice", expires_delta=timedelta(minutes=15))

    with freeze_time("2024-01-01 00:20:00"):
        with pytest.raises(ValueError):
            provider.get_subject(token)
        # refresh accepts an expired access token
        assert provider.get_subject(token, allow_expired=True) == "alice"
