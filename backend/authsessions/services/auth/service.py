# authsessions/services/auth/service.py
from __future__ import annotations

import logging

from authsessions.services._shared.base import BaseService, ServiceContext
from authsessions.services._shared.errors import StoreError
from authsessions.services._shared.ports import (
    RefreshTokenStore,
    SessionDescriptor,
    SessionRegistry,
    TokenProvider,
    record_id_for,
)
from authsessions.services.auth.dto import AuthTokenConfig, TokenPair
from authsessions.services.sessions.rotation import RotationProtocol

log = logging.getLogger(__name__)


class AuthService(BaseService):
    """
    Session lifecycle service (issue / refresh / logout / logout-all).

    Access tokens are stateless and come from a pluggable
    :class:`TokenProvider`; refresh tokens are opaque and live in the
    :class:`RefreshTokenStore`, indexed per user by the
    :class:`SessionRegistry`.

    Connectivity failures propagate as ``StoreUnavailableError`` so the API
    can answer "retry" instead of "sign in again".
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        refresh_store: RefreshTokenStore,
        session_registry: SessionRegistry,
        token_cfg: AuthTokenConfig | None = None,
        ctx: ServiceContext | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param token_provider: Adapter for issuing access JWTs.
        :param refresh_store: Stateful store for refresh token records.
        :param session_registry: Per-user index of active records.
        :param token_cfg: Lifetimes and session cap.
        :param ctx: Optional request-scoped context.
        """
        super().__init__(ctx=ctx)
        self.tokens = token_provider
        self.refresh_store = refresh_store
        self.sessions = session_registry
        self.cfg = token_cfg or AuthTokenConfig()
        self.rotation = RotationProtocol(
            tokens=refresh_store,
            sessions=session_registry,
            ttl_seconds=self.cfg.refresh_ttl,
        )

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue_tokens(self, user_id: str, device_label: str | None = None) -> TokenPair:
        """
        Issue a fresh access/refresh pair for an authenticated user.

        Credential verification happens before this call and is not part of
        this service.
        """
        raw = self.refresh_store.new_token()
        record_id = record_id_for(user_id, raw)

        # Index first: a failed write leaves a dangling id, never an unindexed record.
        self.sessions.add_session(user_id, record_id)
        self.refresh_store.store(
            user_id,
            raw,
            self.cfg.refresh_ttl,
            device_label=device_label or self.ctx.device_label,
        )
        # Again after the write, in case a concurrent revoke_all cleared the set.
        self.sessions.add_session(user_id, record_id)
        self._enforce_session_cap(user_id)
        return self._pair(user_id, raw)

    # ------------------------------------------------------------------ #
    # Refresh with rotation
    # ------------------------------------------------------------------ #

    def refresh(
        self,
        user_id: str,
        old_refresh_token: str,
        device_label: str | None = None,
    ) -> TokenPair:
        """
        Rotate a refresh token and emit a new token pair.

        :raises RecordNotFoundError: The refresh token is invalid, expired or revoked.
        :raises StoreUnavailableError: The store is unreachable; retry later.
        :raises RotationFailedError: The old token is still valid; retry with it.
        """
        outcome = self.rotation.rotate(
            user_id,
            old_refresh_token,
            device_label=device_label or self.ctx.device_label,
        )
        return self._pair(user_id, outcome.refresh_token)

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(self, user_id: str, refresh_token: str) -> None:
        """Revoke one session. Revoking an unknown token is a no-op."""
        self.refresh_store.revoke(user_id, refresh_token)
        self.sessions.remove_session(user_id, record_id_for(user_id, refresh_token))

    def logout_all(self, user_id: str) -> int:
        """Revoke every session of ``user_id``. :returns: Records deleted."""
        return self.sessions.revoke_all(user_id)

    def list_sessions(self, user_id: str) -> list[SessionDescriptor]:
        return self.sessions.list_sessions(user_id)

    # ------------------------------------------------------------------ #
    # Utilities
    # ------------------------------------------------------------------ #

    def _pair(self, user_id: str, refresh_token: str) -> TokenPair:
        access = self.tokens.create_access_token(
            identity=user_id,
            expires_delta=self.cfg.access_expires,
        )
        return TokenPair(
            access_token=access,
            refresh_token=refresh_token,
            expires_in=int(self.cfg.access_expires.total_seconds()),
        )

    def _enforce_session_cap(self, user_id: str) -> None:
        if self.cfg.max_sessions <= 0:
            return
        try:
            excess = self.sessions.list_sessions(user_id)[self.cfg.max_sessions :]
            if not excess:
                return
            removed = self.refresh_store.revoke_records(user_id, [s.record_id for s in excess])
            for session in excess:
                self.sessions.remove_session(user_id, session.record_id)
        except StoreError as exc:
            # The new session is valid; the cap is enforced again on the next login.
            log.warning("auth.session_cap_failed error=%s", exc, extra={"user_id": user_id})
            return
        log.info(
            "auth.session_cap_enforced evicted=%s",
            removed,
            extra={"user_id": user_id},
        )
