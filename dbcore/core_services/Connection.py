import json
import logging
import os
import pprint
import time
from contextlib import contextmanager
from datetime import date, datetime
from datetime import time as dt_time
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from dbcore.core_services.DatabaseConfig import DatabaseConfig
from dbcore.core_services.Exceptions import DatabaseException


def orm_debug_enabled() -> bool:
    return os.getenv("ORM_DEBUG", "false").lower() == "true"


def get_logger(name: str = "orm.sql") -> logging.Logger:
    logger = logging.getLogger(name)
    if orm_debug_enabled() and not logger.handlers:  # prevent duplicate handlers
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s"
        ))
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
    return logger


class DotDict(dict):
    def __getattr__(self, key):
        try:
            return self[key]
        except KeyError:
            raise AttributeError(key) from None

    def __setattr__(self, key, value):
        self[key] = value

    def __delattr__(self, key):
        del self[key]

    def to_dict(self) -> dict:
        return dict(self)


class Connection:
    """
    One physical database handle.

    Statements are written with ``?`` placeholders. Every call goes through
    :meth:`run`, which times it, records it in the query log when logging is
    enabled and turns driver errors into :class:`DatabaseException`.

    Transactions nest by counting: only the outermost ``begin_transaction``
    and the ``commit``/``rollback`` that brings the counter from 1 to 0 touch
    the handle.
    """

    driver: str = None
    driver_errors: tuple = ()

    def __init__(self, config: DatabaseConfig | dict = None, name: str = "default"):
        self.config = DatabaseConfig.from_dict(config or {"driver": self.driver})
        self.name = name
        self.handle = None
        self.transactions = 0
        self.query_log: list[dict[str, Any]] = []
        self._logging_queries = bool(self.config.log_queries)
        self._last_insert_id = None
        self.logging_enabled = orm_debug_enabled()
        self.logger = get_logger("orm.sql")
        self.connect()

    # ------------------------------------------------------------------
    # Handle lifecycle
    # ------------------------------------------------------------------

    def open_handle(self):
        raise NotImplementedError

    def connect(self):
        try:
            self.handle = self.open_handle()
        except self.driver_errors + (OSError,) as e:
            self.logger.error("Could not connect to database [%s] (%s): %s",
                              self.name, self.config.database, e)
            raise DatabaseException.connection_failed(self.name, e).with_context(
                driver=self.config.driver, host=self.config.host, database=self.config.database
            ) from e
        return self.handle

    def disconnect(self):
        if self.handle is not None:
            try:
                self.handle.close()
            except self.driver_errors as e:
                self.logger.warning("Error closing connection [%s]: %s", self.name, e)
            finally:
                self.handle = None
        self.transactions = 0

    def reconnect(self):
        self.disconnect()
        return self.connect()

    def is_open(self) -> bool:
        return self.handle is not None

    def get_handle(self):
        if self.handle is None:
            self.connect()
        return self.handle

    def cursor(self):
        return self.get_handle().cursor()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_physical(self):
        cursor = self.cursor()
        cursor.execute("BEGIN")
        cursor.close()

    def commit_physical(self):
        self.get_handle().commit()

    def rollback_physical(self):
        self.get_handle().rollback()

    def begin_transaction(self) -> bool:
        if self.transactions == 0:
            try:
                self.begin_physical()
            except self.driver_errors as e:
                raise DatabaseException.transaction_failed("begin", e, self.name) from e
        self.transactions += 1
        return True

    def commit(self) -> bool:
        if self.transactions == 1:
            try:
                self.commit_physical()
            except self.driver_errors as e:
                raise DatabaseException.transaction_failed("commit", e, self.name) from e
        self.transactions = max(0, self.transactions - 1)
        return True

    def rollback(self) -> bool:
        if self.transactions == 1:
            try:
                self.rollback_physical()
            except self.driver_errors as e:
                raise DatabaseException.transaction_failed("rollback", e, self.name) from e
        self.transactions = max(0, self.transactions - 1)
        return True

    def transaction_level(self) -> int:
        return self.transactions

    @contextmanager
    def transaction(self):
        self.begin_transaction()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def prepare_sql(self, sql: str, bindings: list) -> str:
        return sql

    def coerce_binding(self, value: Any) -> Any:
        if value is None or isinstance(value, (bool, int, float, Decimal, str, bytes)):
            return value
        if isinstance(value, (datetime, date, dt_time)):
            return value
        if isinstance(value, Enum):
            return self.coerce_binding(value.value)
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str)
        return str(value)

    def bind_values(self, bindings) -> tuple:
        return tuple(self.coerce_binding(value) for value in bindings)

    def execute(self, sql: str, bindings: list):
        cursor = self.cursor()
        if bindings:
            cursor.execute(self.prepare_sql(sql, bindings), self.bind_values(bindings))
        else:
            cursor.execute(sql)
        self._last_insert_id = getattr(cursor, "lastrowid", None)
        return cursor

    def run(self, sql: str, bindings, callback: Callable[[str, list], Any]):
        bindings = list(bindings or [])
        start_time = time.perf_counter()
        try:
            result = callback(sql, bindings)
        except self.driver_errors as e:
            self.logger.error("Query failed on [%s]: %s | %s | %s", self.name, e, sql, bindings)
            raise DatabaseException.from_driver_error(e, sql, bindings, self.name) from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.log_query(sql, bindings, elapsed_ms)
        return result

    @staticmethod
    def rows_from(cursor) -> list[DotDict]:
        if cursor.description is None:
            return []
        columns = [column[0] for column in cursor.description]
        return [DotDict(zip(columns, row)) for row in cursor.fetchall()]

    def statement(self, sql: str, bindings=None) -> bool:
        def callback(sql, bindings):
            self.execute(sql, bindings).close()
            return True

        return self.run(sql, bindings, callback)

    def select(self, sql: str, bindings=None) -> list[DotDict]:
        def callback(sql, bindings):
            cursor = self.execute(sql, bindings)
            try:
                return self.rows_from(cursor)
            finally:
                cursor.close()

        return self.run(sql, bindings, callback)

    def select_one(self, sql: str, bindings=None) -> DotDict | None:
        rows = self.select(sql, bindings)
        return rows[0] if rows else None

    def insert(self, sql: str, bindings=None) -> bool:
        return self.statement(sql, bindings)

    def update(self, sql: str, bindings=None) -> int:
        return self.affecting_statement(sql, bindings)

    def delete(self, sql: str, bindings=None) -> int:
        return self.affecting_statement(sql, bindings)

    def affecting_statement(self, sql: str, bindings=None) -> int:
        def callback(sql, bindings):
            cursor = self.execute(sql, bindings)
            count = cursor.rowcount
            cursor.close()
            return count

        return self.run(sql, bindings, callback)

    def unprepared(self, sql: str) -> bool:
        def callback(sql, bindings):
            self.execute(sql, []).close()
            return True

        return self.run(sql, [], callback)

    def last_insert_id(self):
        return self._last_insert_id

    def table(self, table_name: str):
        from dbcore.database.QueryBuilder import QueryBuilder
        return QueryBuilder(connection=self).table(table_name)

    # ------------------------------------------------------------------
    # Query log
    # ------------------------------------------------------------------

    def log_query(self, sql: str, bindings: list, elapsed_ms: float):
        if self._logging_queries:
            self.query_log.append({"sql": sql, "bindings": bindings, "elapsed": round(elapsed_ms, 2)})

        if self.logging_enabled or self._logging_queries:
            log_entry = {
                "event": "sql_query",
                "sql": sql,
                "params": bindings,
                "elapsed_ms": round(elapsed_ms, 2),
                "connection": self.name,
            }
            self.logger.debug("\n" + pprint.pformat(log_entry, indent=2, width=80, compact=False) + "\n")

    def get_query_log(self) -> list[dict[str, Any]]:
        return self.query_log

    def clear_query_log(self):
        self.query_log = []

    def enable_query_log(self):
        self._logging_queries = True

    def disable_query_log(self):
        self._logging_queries = False

    def logging_queries(self) -> bool:
        return self._logging_queries

    def get_config(self, key: str = None):
        if key is None:
            return self.config
        return getattr(self.config, key, self.config.options.get(key))

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name} driver={self.config.driver} open={self.is_open()}>"
