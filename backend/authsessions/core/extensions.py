"""Flask extension instances and the session store backend lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from flask import Flask, current_app
from flask_jwt_extended import JWTManager

from authsessions.core.config import STORE_BACKENDS
from authsessions.core.logger import tag_backend
from authsessions.infra.memory.fallback_store import FallbackStore
from authsessions.infra.redis.connection import ConnectionManager
from authsessions.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from authsessions.infra.redis.redis_session_registry import RedisSessionRegistry
from authsessions.services._shared.ports import RefreshTokenStore, SessionRegistry

log = logging.getLogger(__name__)

# Global singletons (import-safe)
jwt = JWTManager()

EXTENSION_KEY = "session_backend"


@dataclass(slots=True)
class SessionBackend:
    """
    The storage implementation selected at startup.

    :param name: ``"redis"`` or ``"memory"``.
    :param tokens: Refresh token store.
    :param sessions: Per-user session index.
    :param connection: Connection manager owned by the backend (Redis only).
    :param key_prefix: Namespace of every key, for display.
    """

    name: str
    tokens: RefreshTokenStore
    sessions: SessionRegistry
    connection: ConnectionManager | None = None
    key_prefix: str = ""

    @property
    def durable(self) -> bool:
        return self.name == "redis"


def build_redis_backend(
    connection: ConnectionManager,
    *,
    ttl_seconds: int,
    key_prefix: str = "",
    retire_attempts: int = 3,
) -> SessionBackend:
    """Wire the Redis adapters around an already constructed connection."""
    tokens = RedisRefreshTokenStore(
        conn=connection, key_prefix=key_prefix, retire_attempts=retire_attempts
    )
    sessions = RedisSessionRegistry(
        conn=connection, tokens=tokens, ttl_seconds=ttl_seconds, key_prefix=key_prefix
    )
    return SessionBackend(
        name="redis",
        tokens=tokens,
        sessions=sessions,
        connection=connection,
        key_prefix=key_prefix,
    )


def build_memory_backend(*, ttl_seconds: int, retire_attempts: int = 3) -> SessionBackend:
    """Wire the process-local fallback; one object serves both ports."""
    store = FallbackStore(session_ttl=ttl_seconds, retire_attempts=retire_attempts)
    return SessionBackend(name="memory", tokens=store, sessions=store)


def select_backend(
    config: Mapping[str, Any],
    *,
    connection: ConnectionManager | None = None,
) -> SessionBackend:
    """
    Choose the session store once, at startup.

    ``SESSION_STORE_BACKEND`` decides: ``memory`` always uses the fallback,
    ``redis`` requires Redis and raises when it cannot be reached, ``auto``
    falls back to memory with a WARNING. There is no switching afterwards.

    :param config: Flask config (or any mapping with the same keys).
    :param connection: Pre-built manager; built from ``REDIS_URL`` otherwise.
    :raises ValueError: On an unknown backend name.
    :raises RuntimeError: When ``redis`` is required but unreachable.
    """
    mode = str(config.get("SESSION_STORE_BACKEND", "auto")).strip().lower()
    if mode not in STORE_BACKENDS:
        raise ValueError(
            f"SESSION_STORE_BACKEND must be one of {sorted(STORE_BACKENDS)}, got {mode!r}"
        )

    ttl = int(config.get("REFRESH_TOKEN_TTL", 604800))
    retire_attempts = int(config.get("ROTATION_RETIRE_ATTEMPTS", 3))

    if mode == "memory":
        log.warning(
            "session_store.memory_selected: sessions are not durable and not shared "
            "across processes",
            extra={"backend": "memory"},
        )
        return build_memory_backend(ttl_seconds=ttl, retire_attempts=retire_attempts)

    redis_url = str(config.get("REDIS_URL", ""))
    conn = connection or ConnectionManager.from_url(
        redis_url,
        command_timeout=float(config.get("REDIS_COMMAND_TIMEOUT", 5.0)),
        max_reconnect_attempts=int(config.get("REDIS_MAX_RECONNECT_ATTEMPTS", 3)),
        reconnect_cooldown=float(config.get("REDIS_RECONNECT_COOLDOWN", 30.0)),
    )

    if conn.connect():
        log.info("session_store.redis_selected", extra={"backend": "redis"})
        return build_redis_backend(
            conn,
            ttl_seconds=ttl,
            key_prefix=str(config.get("REDIS_KEY_PREFIX", "")),
            retire_attempts=retire_attempts,
        )

    conn.close()
    if mode == "redis":
        raise RuntimeError(f"Failed to connect to Redis at {redis_url!r}")

    log.warning(
        "session_store.fallback_selected: Redis unreachable at startup; sessions are "
        "process-local and will be lost on restart",
        extra={"backend": "memory"},
    )
    return build_memory_backend(ttl_seconds=ttl, retire_attempts=retire_attempts)


def init_app(app: Flask, *, backend: SessionBackend | None = None) -> None:
    """Initialize JWT and select the session store backend.

    Parameters
    ----------
    app: flask.Flask
        Application used to bind extension instances.
    backend: SessionBackend, optional
        Pre-built backend (tests inject one over ``fakeredis``); selected from
        the app config otherwise.
    """
    jwt.init_app(app)

    selected = backend or select_backend(app.config)
    app.extensions[EXTENSION_KEY] = selected
    tag_backend(selected.name)


def get_backend(app: Flask | None = None) -> SessionBackend:
    """Return the session backend bound to ``app`` (or the current app)."""
    target = app or current_app
    backend = target.extensions.get(EXTENSION_KEY)
    if backend is None:
        raise RuntimeError("Session backend is not initialized. Call init_app() first.")
    return backend


def shutdown(app: Flask) -> None:
    """Release the store connection. Safe to call more than once."""
    backend = app.extensions.get(EXTENSION_KEY)
    if backend is not None and backend.connection is not None:
        backend.connection.close()
