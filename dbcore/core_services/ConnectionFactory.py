import importlib

from dbcore.core_services.Connection import Connection
from dbcore.core_services.DatabaseConfig import DRIVERS, DatabaseConfig
from dbcore.core_services.Exceptions import ConfigurationError

# Drivers are imported on first use so only the driver in use has to be installed.
CONNECTION_CLASSES = {
    "mysql": "dbcore.core_services.MySqlConnection:MySqlConnection",
    "sqlite": "dbcore.core_services.Sqlite3Connection:Sqlite3Connection",
    "pgsql": "dbcore.core_services.PostgresConnection:PostgresConnection",
}


def connection_class(driver: str) -> type[Connection]:
    if driver not in DRIVERS or driver not in CONNECTION_CLASSES:
        raise ConfigurationError(f"Unsupported driver [{driver}].")
    module_name, class_name = CONNECTION_CLASSES[driver].split(":")
    return getattr(importlib.import_module(module_name), class_name)


def make(config: DatabaseConfig | dict, name: str = "default") -> Connection:
    config = DatabaseConfig.from_dict(config)
    return connection_class(config.driver)(config, name)
