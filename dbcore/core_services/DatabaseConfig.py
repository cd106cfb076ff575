import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

from dotenv import load_dotenv

from dbcore.core_services.Exceptions import ConfigurationError

DRIVERS = ("mysql", "sqlite", "pgsql")

DEFAULT_PORTS = {
    "mysql": 3306,
    "pgsql": 5432,
}


def _env_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    driver: str = "sqlite"
    database: str = ":memory:"
    host: str = "localhost"
    port: int | None = None
    username: str = ""
    password: str = ""
    charset: str = "utf8mb4"
    collation: str = "utf8mb4_unicode_ci"
    prefix: str = ""
    options: dict[str, Any] = field(default_factory=dict)
    log_queries: bool = False
    min_connections: int = 1
    max_connections: int = 10
    idle_timeout: float = 300
    pooling: bool = True

    def __post_init__(self):
        self.driver = (self.driver or "").lower()
        if self.port in (None, ""):
            self.port = DEFAULT_PORTS.get(self.driver)
        else:
            self.port = int(self.port)
        self.min_connections = int(self.min_connections)
        self.max_connections = int(self.max_connections)
        self.idle_timeout = float(self.idle_timeout)

    @classmethod
    def from_dict(cls, config: "dict[str, Any] | DatabaseConfig") -> "DatabaseConfig":
        """
        Build a config from a plain mapping. Keys that are not config fields
        are handed to the driver through ``options``; a nested ``pool`` mapping
        may carry the pool settings.
        """
        if isinstance(config, DatabaseConfig):
            return config

        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        options = dict(config.get("options") or {})

        for key, value in config.items():
            if key == "options":
                continue
            if key == "pool" and isinstance(value, dict):
                for pool_key in ("min_connections", "max_connections", "idle_timeout"):
                    if pool_key in value:
                        values[pool_key] = value[pool_key]
                continue
            if key == "user":
                key = "username"
            if key in known:
                values[key] = value
            else:
                options[key] = value

        values["options"] = options
        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = "DB_") -> "DatabaseConfig":
        load_dotenv()

        def env(name, default=None):
            return os.getenv(f"{prefix}{name}", default)

        return cls(
            driver=env("DRIVER", "sqlite"),
            database=env("DATABASE", ":memory:"),
            host=env("HOST", "localhost"),
            port=env("PORT"),
            username=env("USERNAME", ""),
            password=env("PASSWORD", ""),
            charset=env("CHARSET", "utf8mb4"),
            collation=env("COLLATION", "utf8mb4_unicode_ci"),
            prefix=env("PREFIX", ""),
            log_queries=_env_bool(env("LOG_QUERIES")),
            min_connections=env("POOL_MIN", 1),
            max_connections=env("POOL_MAX", 10),
            idle_timeout=env("POOL_IDLE_TIMEOUT", 300),
            pooling=_env_bool(env("POOLING"), True),
        )

    def uses_pool(self) -> bool:
        # every connection to a private in-memory database sees its own database
        if self.driver == "sqlite" and self.database == ":memory:":
            return False
        return bool(self.pooling)

    def merge(self, **overrides: Any) -> "DatabaseConfig":
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def build_dsn(config: DatabaseConfig) -> dict[str, Any] | str:
    """
    Driver-specific connection target:

    - mysql: keyword arguments for ``mysql.connector.connect``
    - sqlite: the database file path (``:memory:`` passes through)
    - pgsql: a libpq conninfo string for ``psycopg.connect``
    """
    if config.driver == "mysql":
        dsn = dict(
            host=config.host,
            port=config.port or DEFAULT_PORTS["mysql"],
            database=config.database,
            user=config.username,
            password=config.password,
        )
        if config.charset:
            dsn["charset"] = config.charset
        if config.collation:
            dsn["collation"] = config.collation
        return dsn

    if config.driver == "sqlite":
        if not config.database:
            raise ConfigurationError("SQLite connection requires a database path.")
        if config.database == ":memory:":
            return ":memory:"
        return os.path.expanduser(config.database)

    if config.driver == "pgsql":
        parts = [
            f"host={config.host}",
            f"port={config.port or DEFAULT_PORTS['pgsql']}",
            f"dbname={config.database}",
        ]
        if config.username:
            parts.append(f"user={config.username}")
        if config.password:
            parts.append(f"password={config.password}")
        return " ".join(parts)

    raise ConfigurationError(f"Unsupported driver [{config.driver}].")
