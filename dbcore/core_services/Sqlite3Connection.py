import sqlite3
from datetime import date, datetime
from datetime import time as dt_time
from decimal import Decimal
from typing import Any

from dbcore.core_services.Connection import Connection
from dbcore.core_services.DatabaseConfig import build_dsn


class Sqlite3Connection(Connection):
    driver = "sqlite"
    driver_errors = (sqlite3.Error,)

    def open_handle(self):
        # autocommit mode; transactions are opened explicitly with BEGIN
        handle = sqlite3.connect(
            build_dsn(self.config),
            isolation_level=None,
            check_same_thread=self.config.options.get("check_same_thread", True),
        )
        if self.config.options.get("foreign_keys", True):
            handle.execute("PRAGMA foreign_keys = ON")
        return handle

    def coerce_binding(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, dt_time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return super().coerce_binding(value)
