import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable

from dbcore.core_services import ConnectionFactory
from dbcore.core_services.Connection import Connection, get_logger
from dbcore.core_services.DatabaseConfig import DatabaseConfig
from dbcore.core_services.Exceptions import ConfigurationError


class ConnectionPool:
    """
    Bounded FIFO pool of idle connections.

    ``acquire`` never blocks: it hands out the oldest idle connection, opens a
    new one while the pool is below ``max_connections``, and past that point
    returns a temporary connection that is closed again on ``release``.
    Idle connections older than ``idle_timeout`` seconds are pruned on every
    acquire.
    """

    def __init__(self, factory: Callable[[], Connection], min_connections: int = 1,
                 max_connections: int = 10, idle_timeout: float = 300,
                 clock: Callable[[], float] = time.monotonic, name: str = "default"):
        if min_connections < 0 or max_connections < 1 or min_connections > max_connections:
            raise ConfigurationError(
                f"Invalid pool bounds min={min_connections} max={max_connections}.", name
            )

        self.factory = factory
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.idle_timeout = idle_timeout
        self.clock = clock
        self.name = name
        self.logger = get_logger("orm.pool")

        self._lock = threading.Lock()
        self._idle: deque[Connection] = deque()
        self._last_used: dict[int, float] = {}
        self._checked_out: set[int] = set()
        self._unpooled: set[int] = set()
        self._reserved = 0

        for _ in range(self.min_connections):
            connection = self._create()
            self._idle.append(connection)
            self._last_used[id(connection)] = self.clock()

    @classmethod
    def from_config(cls, config: DatabaseConfig | dict, name: str = "default", **kwargs) -> "ConnectionPool":
        config = DatabaseConfig.from_dict(config)
        return cls(
            lambda: ConnectionFactory.make(config, name),
            min_connections=config.min_connections,
            max_connections=config.max_connections,
            idle_timeout=config.idle_timeout,
            name=name,
            **kwargs,
        )

    def _create(self) -> Connection:
        try:
            return self.factory()
        except Exception as e:
            self.logger.error("Failed to open connection for pool [%s]: %s", self.name, e)
            raise

    def _total(self) -> int:
        return len(self._idle) + len(self._checked_out) + self._reserved

    def _prune(self):
        now = self.clock()
        stale = [
            conn for conn in self._idle
            if now - self._last_used.get(id(conn), now) > self.idle_timeout
        ]
        for conn in stale:
            self._idle.remove(conn)
            self._last_used.pop(id(conn), None)
        return stale

    def prune_idle_connections(self) -> int:
        with self._lock:
            stale = self._prune()
        for conn in stale:
            conn.disconnect()
        return len(stale)

    def acquire(self) -> Connection:
        with self._lock:
            stale = self._prune()
            if self._idle:
                connection = self._idle.popleft()
                self._last_used.pop(id(connection), None)
                self._checked_out.add(id(connection))
            else:
                connection = None
                pooled = self._total() < self.max_connections
                if pooled:
                    self._reserved += 1

        for conn in stale:
            conn.disconnect()

        if connection is not None:
            return connection

        if not pooled:
            self.logger.warning(
                "Connection pool [%s] exhausted (max %d), creating temporary connection",
                self.name, self.max_connections,
            )

        try:
            connection = self._create()
        except Exception:
            if pooled:
                with self._lock:
                    self._reserved -= 1
            raise

        with self._lock:
            if pooled:
                self._reserved -= 1
                self._checked_out.add(id(connection))
            else:
                self._unpooled.add(id(connection))
        return connection

    def release(self, connection: Connection):
        with self._lock:
            key = id(connection)
            if key in self._last_used:
                return

            self._checked_out.discard(key)
            unpooled = key in self._unpooled
            self._unpooled.discard(key)

            keep = (
                not unpooled
                and connection.is_open()
                and connection.transaction_level() == 0
                and self._total() < self.max_connections
            )
            if keep:
                self._idle.append(connection)
                self._last_used[key] = self.clock()

        if not keep:
            if connection.transaction_level() > 0:
                self.logger.warning("Discarding connection released with an open transaction [%s]", self.name)
            connection.disconnect()

    get_connection = acquire
    release_connection = release

    @contextmanager
    def connection(self):
        connection = self.acquire()
        try:
            yield connection
        finally:
            self.release(connection)

    def current_size(self) -> int:
        return len(self._idle)

    def checked_out(self) -> int:
        return len(self._checked_out)

    def max_size(self) -> int:
        return self.max_connections

    def min_size(self) -> int:
        return self.min_connections

    def close(self):
        with self._lock:
            idle = list(self._idle)
            self._idle.clear()
            self._last_used.clear()
        for connection in idle:
            connection.disconnect()

    def __repr__(self):
        return (f"<ConnectionPool {self.name} idle={self.current_size()} "
                f"out={self.checked_out()} max={self.max_connections}>")
