import traceback
from typing import Any


class DatabaseException(Exception):
    """
    Data-access error carrying the statement, its bindings and the connection
    it ran on. Driver errors are wrapped into this type at the connection
    boundary so callers only ever need to catch one thing.
    """

    CONFIGURATION = 1000
    CONNECTION_FAILED = 1001
    QUERY_FAILED = 1002
    TRANSACTION_FAILED = 1003
    CONSTRAINT_VIOLATION = 1004
    DUPLICATE_ENTRY = 1005
    TABLE_NOT_FOUND = 1006
    COLUMN_NOT_FOUND = 1007
    RECORD_NOT_FOUND = 1008
    MISSING_PRIMARY_KEY = 1009

    def __init__(self, message: str = "", code: int = 0, sql: str = None,
                 bindings: list | tuple = None, connection_name: str = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.sql = sql
        self.bindings = list(bindings or [])
        self.connection_name = connection_name
        self.context: dict[str, Any] = {}

    @classmethod
    def from_driver_error(cls, error: Exception, sql: str = None, bindings=None,
                          connection_name: str = None) -> "DatabaseException":
        code = cls.classify(error)
        message = f"Error executing query: {error}"
        sqlstate = getattr(error, "sqlstate", None)
        if sqlstate:
            message += f" (SQLSTATE: {sqlstate})"
        exc = cls(message, code, sql, bindings, connection_name)
        exc.__cause__ = error
        return exc

    @staticmethod
    def classify(error: Exception) -> int:
        """Map a driver error onto one of the taxonomy codes."""
        sqlstate = str(getattr(error, "sqlstate", None) or "")
        errno = getattr(error, "errno", None)
        text = str(error).lower()

        if errno == 1062 or sqlstate == "23505" or "unique constraint failed" in text or "duplicate entry" in text:
            return DatabaseException.DUPLICATE_ENTRY
        if sqlstate.startswith("23") or errno in (1048, 1216, 1217, 1451, 1452) or "constraint failed" in text:
            return DatabaseException.CONSTRAINT_VIOLATION
        if errno == 1146 or sqlstate == "42P01" or "no such table" in text:
            return DatabaseException.TABLE_NOT_FOUND
        if errno == 1054 or sqlstate == "42703" or "no such column" in text:
            return DatabaseException.COLUMN_NOT_FOUND
        if errno in (1045, 2002, 2003, 2005, 2006, 2013) or sqlstate.startswith("08") \
                or "unable to open database" in text:
            return DatabaseException.CONNECTION_FAILED
        return DatabaseException.QUERY_FAILED

    @classmethod
    def connection_failed(cls, connection_name: str, previous: Exception = None) -> "DatabaseException":
        message = f"Failed to connect to database '{connection_name}'"
        if previous is not None:
            message += f": {previous}"
        exc = cls(message, cls.CONNECTION_FAILED, connection_name=connection_name)
        exc.__cause__ = previous
        return exc

    @classmethod
    def transaction_failed(cls, operation: str, previous: Exception = None,
                           connection_name: str = None) -> "DatabaseException":
        message = f"Transaction {operation} failed"
        if previous is not None:
            message += f": {previous}"
        exc = cls(message, cls.TRANSACTION_FAILED, connection_name=connection_name)
        exc.__cause__ = previous
        return exc

    def with_context(self, **context: Any) -> "DatabaseException":
        self.context.update(context)
        return self

    def formatted_sql(self) -> str | None:
        """Statement with bindings substituted into the placeholders, for diagnostics only."""
        if not self.sql:
            return None

        sql = self.sql
        for binding in self.bindings:
            value = f"'{binding}'" if isinstance(binding, str) else str(binding)
            sql = sql.replace("?", value, 1)
        return sql

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "sql": self.sql,
            "bindings": self.bindings,
            "formatted_sql": self.formatted_sql(),
            "connection": self.connection_name,
            "context": self.context,
            "trace": "".join(traceback.format_exception(self)) if self.__traceback__ else None,
        }

    def is_connection_error(self) -> bool:
        return self.code == self.CONNECTION_FAILED

    def is_constraint_violation(self) -> bool:
        return self.code in (self.CONSTRAINT_VIOLATION, self.DUPLICATE_ENTRY)

    def is_schema_error(self) -> bool:
        return self.code in (self.TABLE_NOT_FOUND, self.COLUMN_NOT_FOUND)


class ConfigurationError(DatabaseException):
    # Unknown driver, missing connection, invalid pool bounds
    def __init__(self, message: str, connection_name: str = None):
        super().__init__(message, DatabaseException.CONFIGURATION, connection_name=connection_name)


class RecordNotFound(DatabaseException):
    def __init__(self, model: str = None, ids=None, message: str = None):
        self.model = model
        self.ids = list(ids) if isinstance(ids, (list, tuple, set)) else ([] if ids is None else [ids])
        if message is None:
            message = f"No query results for model [{model}]" if model else "Query returned no results"
            if self.ids:
                message += " " + ", ".join(str(i) for i in self.ids)
        super().__init__(message, DatabaseException.RECORD_NOT_FOUND)


class MissingPrimaryKey(DatabaseException):
    def __init__(self, model: str):
        self.model = model
        super().__init__(f"No primary key defined on model [{model}].", DatabaseException.MISSING_PRIMARY_KEY)
