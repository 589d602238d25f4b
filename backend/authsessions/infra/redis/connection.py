# comments in English; reST docstrings
"""Shared, explicitly constructed connection handle to the Redis session store."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

import redis  # type: ignore[import-untyped]
from redis.backoff import NoBackoff  # type: ignore[import-untyped]
from redis.exceptions import ConnectionError as RedisConnectionError  # type: ignore[import-untyped]
from redis.exceptions import RedisError  # type: ignore[import-untyped]
from redis.exceptions import TimeoutError as RedisTimeoutError  # type: ignore[import-untyped]
from redis.retry import Retry  # type: ignore[import-untyped]

from authsessions.services._shared.errors import (
    BatchMismatchError,
    StoreCommandError,
    StoreError,
    StoreTimeoutError,
    StoreUnavailableError,
)

log = logging.getLogger(__name__)

ClientFactory = Callable[[float], redis.Redis]

DEFAULT_COMMAND_TIMEOUT = 5.0


class ConnectionState(Enum):
    """Lifecycle of the store connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True, slots=True)
class Command:
    """One command of a pipelined batch, e.g. ``Command("SET", ("k", "v", "EX", 60))``."""

    name: str
    args: tuple[Any, ...] = ()


def cmd(name: str, *args: Any) -> Command:
    """Shorthand constructor for :class:`Command`."""
    return Command(name=name, args=args)


class ConnectionManager:
    """
    Own the Redis client(s), track availability and run pipelined batches.

    One instance is created at startup (see ``authsessions.core.extensions``)
    and injected into every adapter that needs it; :meth:`close` releases it
    at shutdown.

    :param client_factory: Builds a client whose socket timeout is the given
        number of seconds. Called lazily, once per distinct timeout.
    :param command_timeout: Default per-command timeout in seconds.
    :param max_reconnect_attempts: Pings attempted by one :meth:`connect` call.
    :param reconnect_cooldown: Seconds after exhausting the attempts during
        which the manager fails fast, until the next scheduled retry.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        max_reconnect_attempts: int = 3,
        reconnect_cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if command_timeout <= 0:
            raise ValueError("command_timeout must be positive")
        self._factory = client_factory
        self.command_timeout = float(command_timeout)
        self.max_reconnect_attempts = max(1, int(max_reconnect_attempts))
        self.reconnect_cooldown = float(reconnect_cooldown)
        self._clock = clock
        self._sleep = sleep

        self._clients: dict[float, redis.Redis] = {}
        self._clients_lock = threading.Lock()
        self._connect_lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._exhausted_at: float | None = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> ConnectionManager:
        """Build a manager whose clients connect to ``url``."""

        def factory(timeout: float) -> redis.Redis:
            # Client-side retries would multiply the effective timeout.
            return redis.Redis.from_url(
                url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
                retry=Retry(NoBackoff(), 0),
            )

        return cls(factory, **kwargs)

    # -------------------- state ------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_available(self) -> bool:
        """Return ``True`` only while the last observed transition was to CONNECTED."""
        return self._state is ConnectionState.CONNECTED

    def _set_state(self, new: ConnectionState) -> None:
        old, self._state = self._state, new
        if old is new:
            return
        if new is ConnectionState.CONNECTED:
            log.info("store.connected")
        elif new is ConnectionState.DISCONNECTED and old is ConnectionState.CONNECTED:
            log.warning("store.disconnected")

    def _mark_lost(self, exc: Exception) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        log.warning("store.connection_lost error=%s", exc)

    def _in_cooldown(self) -> bool:
        if self._exhausted_at is None:
            return False
        return self._clock() - self._exhausted_at < self.reconnect_cooldown

    # -------------------- clients ----------------------

    def _client(self, timeout: float) -> redis.Redis:
        with self._clients_lock:
            client = self._clients.get(timeout)
            if client is None:
                client = self._factory(timeout)
                self._clients[timeout] = client
            return client

    @contextmanager
    def _guard(self, timeout: float) -> Iterator[None]:
        """Translate redis-py failures into store errors and update the state."""
        try:
            yield
        except RedisTimeoutError as exc:
            self._mark_lost(exc)
            raise StoreTimeoutError(timeout) from exc
        except RedisConnectionError as exc:
            self._mark_lost(exc)
            raise StoreUnavailableError(f"Session store unavailable: {exc}") from exc

    # -------------------- lifecycle --------------------

    def connect(self) -> bool:
        """
        Try to (re)establish connectivity with bounded attempts.

        :returns: ``True`` when connected. ``False`` when every attempt failed,
            when still in the post-exhaustion cooldown, or when another
            thread is already connecting.
        """
        if self.is_available():
            return True
        if self._in_cooldown():
            return False
        if not self._connect_lock.acquire(blocking=False):
            return False
        try:
            for attempt in range(1, self.max_reconnect_attempts + 1):
                self._set_state(ConnectionState.CONNECTING)
                try:
                    self._client(self.command_timeout).ping()
                except RedisError as exc:
                    self._set_state(ConnectionState.DISCONNECTED)
                    log.warning(
                        "store.connect_failed attempt=%s/%s error=%s",
                        attempt,
                        self.max_reconnect_attempts,
                        exc,
                    )
                    if attempt < self.max_reconnect_attempts:
                        self._sleep(min(attempt * 0.1, 3.0))
                    continue
                self._exhausted_at = None
                self._set_state(ConnectionState.CONNECTED)
                return True

            self._exhausted_at = self._clock()
            log.error(
                "store.reconnect_exhausted attempts=%s cooldown=%ss",
                self.max_reconnect_attempts,
                self.reconnect_cooldown,
            )
            return False
        finally:
            self._connect_lock.release()

    def reconnect(self) -> bool:
        """Manual retry: forget any previous exhaustion and connect again."""
        self._exhausted_at = None
        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        return self.connect()

    def close(self) -> None:
        """Release every pool. The manager can be reconnected afterwards."""
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                client.close()
            except RedisError as exc:  # pragma: no cover - best effort on shutdown
                log.warning("store.close_failed error=%s", exc)
        self._set_state(ConnectionState.DISCONNECTED)
        log.info("store.closed")

    # -------------------- commands ---------------------

    def ping(self) -> bool:
        """
        Round-trip to the store, updating availability either way.

        Never raises for connectivity problems; returns ``False`` instead.
        Does not touch the network during the post-exhaustion cooldown.
        """
        if not self.is_available() and self._in_cooldown():
            return False
        try:
            with self._guard(self.command_timeout):
                self._client(self.command_timeout).ping()
        except StoreUnavailableError:
            return False
        self._exhausted_at = None
        self._set_state(ConnectionState.CONNECTED)
        return True

    def _ensure_connected(self, timeout: float) -> None:
        """
        Request-path reconnect: a single ping bounded by ``timeout``, no backoff.

        The multi-attempt loop belongs to :meth:`connect` (startup, manual
        and scheduled retries) so one command never waits longer than its
        own timeout for a reconnect.
        """
        if self.is_available():
            return
        if self._in_cooldown() or not self._connect_lock.acquire(blocking=False):
            raise StoreUnavailableError("Session store unavailable: not connected")
        try:
            self._set_state(ConnectionState.CONNECTING)
            try:
                self._client(timeout).ping()
            except RedisTimeoutError as exc:
                self._set_state(ConnectionState.DISCONNECTED)
                log.warning("store.reconnect_failed error=%s", exc)
                raise StoreTimeoutError(timeout) from exc
            except RedisError as exc:
                self._set_state(ConnectionState.DISCONNECTED)
                log.warning("store.reconnect_failed error=%s", exc)
                raise StoreUnavailableError(f"Session store unavailable: {exc}") from exc
            self._exhausted_at = None
            self._set_state(ConnectionState.CONNECTED)
        finally:
            self._connect_lock.release()

    def execute(self, commands: Sequence[Command], *, timeout: float | None = None) -> list[Any]:
        """
        Run ``commands`` as one pipelined batch and return one result per command.

        :param commands: Ordered batch.
        :param timeout: Per-command timeout in seconds; defaults to
            :attr:`command_timeout`.
        :raises StoreTimeoutError: When the store does not answer in time.
        :raises StoreUnavailableError: When connectivity is lost.
        :raises BatchMismatchError: When the result count differs from the
            command count; the whole batch counts as failed.
        :raises StoreCommandError: When one of the commands failed.
        """
        if not commands:
            return []
        effective = self.command_timeout if timeout is None else float(timeout)
        if effective <= 0:
            raise ValueError("timeout must be positive")

        self._ensure_connected(effective)
        client = self._client(effective)
        with self._guard(effective):
            with client.pipeline(transaction=False) as pipe:
                for command in commands:
                    pipe.execute_command(command.name, *command.args)
                results = list(pipe.execute(raise_on_error=False))

        if len(results) != len(commands):
            raise BatchMismatchError(len(commands), len(results))
        for index, (command, result) in enumerate(zip(commands, results)):
            if isinstance(result, Exception):
                raise StoreCommandError(index, command.name, result)
        return results

    def scan_keys(self, pattern: str, *, count: int = 500) -> Iterator[str]:
        """Iterate keys matching ``pattern`` with ``SCAN`` (never ``KEYS``)."""
        self._ensure_connected(self.command_timeout)
        client = self._client(self.command_timeout)
        with self._guard(self.command_timeout):
            yield from client.scan_iter(match=pattern, count=count)

    def persistence_info(self) -> dict[str, str] | None:
        """
        Return the store's ``save`` and ``appendonly`` settings.

        :returns: Mapping of setting to value, or ``None`` when the store
            refuses ``CONFIG GET`` (managed services often do).
        """
        try:
            results = self.execute([cmd("CONFIG", "GET", "save"), cmd("CONFIG", "GET", "appendonly")])
        except StoreUnavailableError:
            raise
        except StoreError as exc:
            log.info("store.persistence_unknown error=%s", exc)
            return None

        info: dict[str, str] = {}
        for raw in results:
            if isinstance(raw, dict):
                pairs = raw.items()
            else:
                items = list(raw or [])
                pairs = zip(items[::2], items[1::2])
            info.update({str(k): str(v) for k, v in pairs})
        return info
