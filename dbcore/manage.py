import argparse
import json
import sys

from dbcore.core_services.DatabaseManager import DatabaseManager
from dbcore.core_services.Exceptions import DatabaseException


def status(manager: DatabaseManager, name: str = None) -> dict:
    config = manager.get_config(name)
    target = config.database if config.driver == "sqlite" else f"{config.host}:{config.port}/{config.database}"
    info = {
        "connection": name or manager.get_default_connection(),
        "driver": config.driver,
        "target": target,
        "pooling": config.uses_pool(),
        "min_connections": config.min_connections,
        "max_connections": config.max_connections,
        "idle_timeout": config.idle_timeout,
    }
    if config.uses_pool() and (name or manager.get_default_connection()) in manager.pools:
        info["idle_connections"] = manager.pool(name).current_size()
    return info


def run_query(manager: DatabaseManager, sql: str, bindings: list, name: str = None) -> list:
    with manager.using(name) as connection:
        return [row.to_dict() for row in connection.select(sql, bindings)]


def main(argv: list = None):
    parser = argparse.ArgumentParser(description="Database toolkit")
    parser.add_argument("--connection", help="Connection name (defaults to the configured default)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("db:status", help="Show connection and pool settings")

    query_parser = subparsers.add_parser("db:query", help="Run a SELECT and print rows as JSON")
    query_parser.add_argument("sql", help="SQL with ? placeholders")
    query_parser.add_argument("bindings", nargs="*", help="Values for the placeholders")

    args = parser.parse_args(argv)
    manager = DatabaseManager.from_env()

    if args.command == "db:status":
        print(json.dumps(status(manager, args.connection), indent=2))

    elif args.command == "db:query":
        try:
            rows = run_query(manager, args.sql, args.bindings, args.connection)
        except DatabaseException as e:
            print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
            # 2: the database could not be reached, 1: the query itself failed
            return 2 if e.is_connection_error() else 1
        print(json.dumps(rows, indent=2, default=str))

    else:
        parser.print_help()

    manager.disconnect_all()
    return 0


if __name__ == "__main__":
    sys.exit(main())
