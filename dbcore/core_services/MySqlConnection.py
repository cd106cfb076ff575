import mysql.connector

from dbcore.core_services.Connection import Connection
from dbcore.core_services.DatabaseConfig import build_dsn


class MySqlConnection(Connection):
    driver = "mysql"
    driver_errors = (mysql.connector.Error,)

    def open_handle(self):
        connection_dict = build_dsn(self.config)
        connection_dict.update(self.config.options)
        connection_dict.setdefault("autocommit", True)
        return mysql.connector.connect(**connection_dict)

    def prepare_sql(self, sql: str, bindings: list) -> str:
        # mysql.connector uses the "format" paramstyle
        return sql.replace("%", "%%").replace("?", "%s")

    def begin_physical(self):
        self.get_handle().start_transaction()

    def cursor(self):
        return self.get_handle().cursor(buffered=True)
