import threading
from contextlib import contextmanager

from dbcore.core_services import ConnectionFactory
from dbcore.core_services.Connection import Connection
from dbcore.core_services.ConnectionPool import ConnectionPool
from dbcore.core_services.DatabaseConfig import DatabaseConfig
from dbcore.core_services.Exceptions import ConfigurationError


class DatabaseManager:
    """
    Registry of named connection configurations.

    ``connection(name)`` returns one cached, dedicated connection per name.
    ``using(name)`` and ``transaction(name)`` borrow a connection from the
    name's pool and give it back when the block ends; query builders run
    through ``using`` unless they are pinned to a connection.

    While a block is open, further ``acquire(name)`` calls on the same thread
    get the connection already borrowed, so builders and records used inside
    ``with manager.transaction():`` run in that transaction.
    """

    def __init__(self, connections: dict = None, default: str = "default"):
        self.configs: dict[str, DatabaseConfig] = {
            name: DatabaseConfig.from_dict(config) for name, config in (connections or {}).items()
        }
        self.default = default
        self.connections: dict[str, Connection] = {}
        self.pools: dict[str, ConnectionPool] = {}
        # (name, thread id) -> [connection, depth]
        self._active: dict[tuple[str, int], list] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, name: str = "default") -> "DatabaseManager":
        return cls({name: DatabaseConfig.from_env()}, default=name)

    def add_connection(self, name: str, config: DatabaseConfig | dict):
        self.configs[name] = DatabaseConfig.from_dict(config)
        return self

    def get_config(self, name: str = None) -> DatabaseConfig:
        name = name or self.default
        if name not in self.configs:
            raise ConfigurationError(f"Database connection [{name}] not configured.", name)
        return self.configs[name]

    def connection(self, name: str = None) -> Connection:
        name = name or self.default
        if name not in self.connections:
            self.connections[name] = ConnectionFactory.make(self.get_config(name), name)
        return self.connections[name]

    def pool(self, name: str = None) -> ConnectionPool:
        name = name or self.default
        if name not in self.pools:
            self.pools[name] = ConnectionPool.from_config(self.get_config(name), name)
        return self.pools[name]

    def acquire(self, name: str = None) -> Connection:
        name = name or self.default
        key = (name, threading.get_ident())
        with self._lock:
            active = self._active.get(key)
            if active is not None:
                active[1] += 1
                return active[0]

        if not self.get_config(name).uses_pool():
            connection = self.connection(name)
        else:
            connection = self.pool(name).acquire()

        with self._lock:
            self._active[key] = [connection, 1]
        return connection

    def release(self, connection: Connection, name: str = None):
        name = name or connection.name
        key = (name, threading.get_ident())
        with self._lock:
            active = self._active.get(key)
            if active is not None and active[0] is connection:
                active[1] -= 1
                if active[1] > 0:
                    return
                del self._active[key]

        if not self.get_config(name).uses_pool():
            return
        self.pool(name).release(connection)

    def active_connection(self, name: str = None) -> Connection | None:
        """Connection borrowed by an open ``using``/``transaction`` block on this thread."""
        active = self._active.get((name or self.default, threading.get_ident()))
        return active[0] if active else None

    @contextmanager
    def using(self, name: str = None):
        connection = self.acquire(name)
        try:
            yield connection
        finally:
            self.release(connection, name)

    @contextmanager
    def transaction(self, name: str = None):
        with self.using(name) as connection:
            with connection.transaction():
                yield connection

    def table(self, table_name: str, connection: str = None):
        from dbcore.database.QueryBuilder import QueryBuilder
        return QueryBuilder(manager=self, connection_name=connection).table(table_name)

    def disconnect(self, name: str = None):
        name = name or self.default
        with self._lock:
            for key in [key for key in self._active if key[0] == name]:
                del self._active[key]
        connection = self.connections.pop(name, None)
        if connection is not None:
            connection.disconnect()
        pool = self.pools.pop(name, None)
        if pool is not None:
            pool.close()

    def disconnect_all(self):
        for name in set(self.connections) | set(self.pools):
            self.disconnect(name)

    def get_default_connection(self) -> str:
        return self.default

    def set_default_connection(self, name: str):
        self.default = name
        return self

    def get_connections(self) -> dict[str, Connection]:
        return self.connections

    def __getattr__(self, method):
        # select/statement/insert/... on the default connection
        if method.startswith("_"):
            raise AttributeError(method)
        return getattr(self.connection(), method)
