# comments in English; reST docstrings
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, cast

from authsessions.services._shared.ports import TokenProvider


@dataclass(slots=True)
class JWTTokenProvider(TokenProvider):
    """
    Adapter for Flask-JWT-Extended.

    Access tokens are stateless: creating or decoding one never touches the
    session store.

    .. note::
       Requires an active Flask app context with proper JWT settings.
    """

    def create_access_token(
        self,
        *,
        identity: str,
        expires_delta: timedelta | None = None,
        additional_claims: dict[str, Any] | None = None,
    ) -> str:
        from flask_jwt_extended import create_access_token as _create_access

        return cast(
            str,
            _create_access(
                identity=str(identity),
                additional_claims=additional_claims or {},
                expires_delta=expires_delta,
            ),
        )

    def decode(self, token: str, *, allow_expired: bool = False) -> dict[str, Any]:
        from flask_jwt_extended import decode_token

        return cast(dict[str, Any], decode_token(token, allow_expired=allow_expired))

    def get_subject(self, token: str, *, allow_expired: bool = False) -> str:
        return str(self.decode(token, allow_expired=allow_expired)["sub"])
