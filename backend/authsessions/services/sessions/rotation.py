"""
Refresh token rotation across the token store and the session registry.

State machine for one token lineage::

    ACTIVE --write new--> ROTATING --confirm new, delete old--> RETIRED
                              |
                              +--new unconfirmed--> ROTATION_FAILED (old still ACTIVE)

There is no state in which neither the old nor the new token is usable.
The protocol owns no state; the ordering of store calls is the whole
concurrency mechanism, no lock is taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from authsessions.services._shared.errors import (
    RecordNotFoundError,
    RotationFailedError,
    SecurityInconsistencyError,
    StoreError,
)
from authsessions.services._shared.ports import (
    RefreshTokenRecord,
    RefreshTokenStore,
    SessionRegistry,
    record_id_for,
)

log = logging.getLogger(__name__)


class RotationState(Enum):
    ACTIVE = "active"
    ROTATING = "rotating"
    RETIRED = "retired"
    ROTATION_FAILED = "rotation_failed"


@dataclass(frozen=True, slots=True)
class RotationOutcome:
    """
    Result of a successful rotation.

    :ivar state: Always :attr:`RotationState.RETIRED` for a returned outcome.
    :ivar record: The new record.
    :ivar refresh_token: The new raw refresh token, to hand to the client.
    :ivar retired_record_id: Identifier of the replaced record.
    :ivar inconsistency: Set when the old record could not be removed.
    """

    state: RotationState
    record: RefreshTokenRecord
    refresh_token: str
    retired_record_id: str
    inconsistency: SecurityInconsistencyError | None = None


class RotationProtocol:
    """
    Orchestrate ``RefreshTokenStore.rotate`` with the session index.

    The new id enters the user's session set before the new record is
    written and again after it is confirmed. The old id leaves the set only
    once the old record is gone; a lingering old record stays indexed so
    ``revoke_all`` still reaches it.

    :param tokens: Refresh token store.
    :param sessions: Per-user session index.
    :param ttl_seconds: Default TTL for new records.
    """

    def __init__(
        self,
        *,
        tokens: RefreshTokenStore,
        sessions: SessionRegistry,
        ttl_seconds: int,
    ) -> None:
        self.tokens = tokens
        self.sessions = sessions
        self.ttl_seconds = ttl_seconds

    def _transition(self, user_id: str, state: RotationState, **fields: object) -> None:
        level = logging.WARNING if state is RotationState.ROTATION_FAILED else logging.INFO
        detail = " ".join(f"{k}={v}" for k, v in fields.items())
        log.log(
            level,
            "rotation.%s %s",
            state.value,
            detail,
            extra={"user_id": user_id, "state": state.value},
        )

    def rotate(
        self,
        user_id: str,
        old_raw_token: str,
        new_raw_token: str | None = None,
        ttl_seconds: int | None = None,
        *,
        device_label: str | None = None,
    ) -> RotationOutcome:
        """
        Replace ``old_raw_token`` with a new refresh token.

        :param new_raw_token: Token to install; minted by the store when omitted.
        :param ttl_seconds: TTL of the new record; defaults to the configured one.
        :raises RecordNotFoundError: Old token invalid; its id is dropped from
            the session set before propagating.
        :raises StoreUnavailableError: Store unreachable before anything changed.
        :raises RotationFailedError: New record unconfirmed; the old token is
            still valid and the call may be retried with it.
        """
        new_raw = new_raw_token or self.tokens.new_token()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        old_id = record_id_for(user_id, old_raw_token)
        new_id = record_id_for(user_id, new_raw)

        self.sessions.add_session(user_id, new_id)
        self._transition(user_id, RotationState.ROTATING, old=old_id, new=new_id)

        try:
            result = self.tokens.rotate(
                user_id, old_raw_token, new_raw, ttl, device_label=device_label
            )
        except RecordNotFoundError:
            self._forget(user_id, old_id, new_id)
            raise
        except RotationFailedError as exc:
            self._transition(user_id, RotationState.ROTATION_FAILED, reason=exc.reason)
            self._forget(user_id, new_id)
            raise
        except StoreError as exc:
            # Unreachable before the write: old token untouched.
            self._transition(user_id, RotationState.ROTATION_FAILED, reason=exc)
            self._forget(user_id, new_id)
            raise

        # Re-index: a concurrent revoke_all may have cleared the set meanwhile.
        self._remember(user_id, new_id)
        if result.inconsistency is None:
            self._forget(user_id, result.retired_record_id)
        self._transition(user_id, RotationState.RETIRED, old=old_id, new=new_id)
        return RotationOutcome(
            state=RotationState.RETIRED,
            record=result.record,
            refresh_token=new_raw,
            retired_record_id=result.retired_record_id,
            inconsistency=result.inconsistency,
        )

    def _remember(self, user_id: str, record_id: str) -> None:
        try:
            self.sessions.add_session(user_id, record_id)
        except StoreError as exc:
            log.warning(
                "rotation.session_index_refresh_failed error=%s",
                exc,
                extra={"user_id": user_id, "record_id": record_id},
            )

    def _forget(self, user_id: str, *record_ids: str) -> None:
        # Index cleanup only; a leftover id is reconciled on the next read.
        for record_id in record_ids:
            try:
                self.sessions.remove_session(user_id, record_id)
            except StoreError as exc:
                log.warning(
                    "rotation.session_index_cleanup_failed error=%s",
                    exc,
                    extra={"user_id": user_id, "record_id": record_id},
                )
