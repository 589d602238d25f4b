# authsessions/services/auth/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPair:
    """
    Output DTO with access and refresh tokens.

    :param access_token: Encoded access JWT.
    :type access_token: str
    :param refresh_token: Opaque refresh token (only its hash is stored).
    :type refresh_token: str
    :param expires_in: Access token lifetime in seconds.
    :type expires_in: int
    """

    access_token: str
    refresh_token: str
    expires_in: int


# ------------------------------ Config DTO -------------------------------- #


@dataclass(frozen=True, slots=True)
class AuthTokenConfig:
    """
    Token emission configuration.

    :param access_expires: Access token lifetime.
    :type access_expires: timedelta
    :param refresh_expires: Refresh token lifetime.
    :type refresh_expires: timedelta
    :param max_sessions: Sessions kept per user; older ones are revoked on login.
    :type max_sessions: int
    """

    access_expires: timedelta = timedelta(minutes=15)
    refresh_expires: timedelta = timedelta(days=7)
    max_sessions: int = 5

    @property
    def refresh_ttl(self) -> int:
        return int(self.refresh_expires.total_seconds())
