from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Protocol


class TokenProvider(Protocol):
    """Port for issuing and decoding stateless access tokens."""

    def create_access_token(
        self,
        *,
        identity: str,
        expires_delta: timedelta | None = None,
        additional_claims: dict[str, Any] | None = None,
    ) -> str: ...

    def decode(self, token: str, *, allow_expired: bool = False) -> dict[str, Any]: ...

    def get_subject(self, token: str, *, allow_expired: bool = False) -> str: ...


class StubTokenProvider(TokenProvider):
    """Deterministic token provider used in unit tests."""

    def __init__(self) -> None:
        self._seq = 0
        self._issued: dict[str, dict[str, Any]] = {}

    def create_access_token(
        self,
        *,
        identity: str,
        expires_delta: timedelta | None = None,
        additional_claims: dict[str, Any] | None = None,
    ) -> str:
        self._seq += 1
        token = f"access.{identity}.{self._seq}"
        exp = datetime.now(UTC) + (expires_delta or timedelta(minutes=15))
        payload: dict[str, Any] = {"sub": identity, "type": "access", "exp": int(exp.timestamp())}
        if additional_claims:
            payload.update(additional_claims)
        self._issued[token] = payload
        return token

    def decode(self, token: str, *, allow_expired: bool = False) -> dict[str, Any]:
        payload = self._issued[token]
        if not allow_expired and payload["exp"] <= int(datetime.now(UTC).timestamp()):
            raise ValueError("token expired")
        return payload

    def get_subject(self, token: str, *, allow_expired: bool = False) -> str:
        return str(self.decode(token, allow_expired=allow_expired)["sub"])
