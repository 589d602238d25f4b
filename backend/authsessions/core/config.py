"""Settings for the session service, read from the environment once at import."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Final, TypeVar

from dotenv import load_dotenv

ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'

#: Accepted values for ``SESSION_STORE_BACKEND``.
STORE_BACKENDS: Final[frozenset[str]] = frozenset({"redis", "memory", "auto"})

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "y", "on"})

N = TypeVar("N", int, float)

load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """``name`` as a flag: ``1``, ``true``, ``yes``, ``y`` or ``on`` (any case) are true."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_number(name: str, default: N, parse: Callable[[str], N], kind: str) -> N:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be {kind}, got {raw!r}") from exc


def env_int(name: str, default: int) -> int:
    """
    Read an integer setting.

    Raises
    ------
    ValueError
        The variable is set to something that is not an integer. A bad TTL
        stops the process at startup.
    """
    return _env_number(name, default, int, "an integer")


def env_float(name: str, default: float) -> float:
    """Read a float setting; see :func:`env_int`."""
    return _env_number(name, default, float, "a number")


class BaseConfig:
    """Defaults shared by every environment.

    Attributes
    ----------
    API_BASE_PREFIX: str
        Mount point of the versioned API.
    SECRET_KEY, JWT_SECRET_KEY: str
        Flask secret and access-token signing key.
    REFRESH_TOKEN_TTL: int
        Refresh token lifetime in seconds (7 days).
    ACCESS_TOKEN_TTL: int
        Access token lifetime in seconds (15 minutes).
    REDIS_URL: str
        Connection string of the session store.
    REDIS_COMMAND_TIMEOUT: float
        Per-command timeout in seconds.
    REDIS_MAX_RECONNECT_ATTEMPTS: int
        Pings attempted by one reconnect cycle.
    REDIS_RECONNECT_COOLDOWN: float
        Seconds the store fails fast after a reconnect cycle is exhausted.
    REDIS_KEY_PREFIX: str
        Namespace for session keys when Redis is shared with other subsystems.
    SESSION_STORE_BACKEND: str
        ``redis`` (durable, required), ``memory`` (process-local) or ``auto``
        (Redis when reachable at startup, otherwise memory).
    MAX_SESSIONS_PER_USER: int
        Sessions kept per user; the oldest are revoked beyond it. ``0``
        disables the cap.
    ROTATION_RETIRE_ATTEMPTS: int
        Deletes attempted on a retired refresh token before reporting an
        inconsistency.
    LOG_LEVEL: str
        Root logging verbosity.
    """

    API_BASE_PREFIX = "/api"

    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_JWT")

    REFRESH_TOKEN_TTL = env_int("REFRESH_TOKEN_TTL", 604800)
    ACCESS_TOKEN_TTL = env_int("ACCESS_TOKEN_TTL", 900)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=ACCESS_TOKEN_TTL)

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_COMMAND_TIMEOUT = env_float("REDIS_COMMAND_TIMEOUT", 5.0)
    REDIS_MAX_RECONNECT_ATTEMPTS = env_int("REDIS_MAX_RECONNECT_ATTEMPTS", 3)
    REDIS_RECONNECT_COOLDOWN = env_float("REDIS_RECONNECT_COOLDOWN", 30.0)
    REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "")
    SESSION_STORE_BACKEND = os.getenv("SESSION_STORE_BACKEND", "auto").strip().lower()
    MAX_SESSIONS_PER_USER = env_int("MAX_SESSIONS_PER_USER", 5)
    ROTATION_RETIRE_ATTEMPTS = env_int("ROTATION_RETIRE_ATTEMPTS", 3)

    JSON_SORT_KEYS = False
    PROPAGATE_EXCEPTIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    DEBUG = env_bool("FLASK_DEBUG", True)


class TestingConfig(BaseConfig):
    """Test runs: process-local store unless ``TEST_SESSION_STORE_BACKEND`` says otherwise."""

    TESTING = True
    JWT_SECRET_KEY = "test-jwt-secret-key-with-at-least-32-bytes"
    SESSION_STORE_BACKEND = os.getenv("TEST_SESSION_STORE_BACKEND", "memory").strip().lower()
    REDIS_KEY_PREFIX = "test:"


class ProductionConfig(BaseConfig):
    """Production: Redis is mandatory unless ``SESSION_STORE_BACKEND`` is set explicitly."""

    SESSION_STORE_BACKEND = os.getenv("SESSION_STORE_BACKEND", "redis").strip().lower()


CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Config class named by ``APP_ENV``; :class:`DevelopmentConfig` when unset or unknown."""
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)
