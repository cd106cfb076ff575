import psycopg

from dbcore.core_services.Connection import Connection
from dbcore.core_services.DatabaseConfig import build_dsn


class PostgresConnection(Connection):
    driver = "pgsql"
    driver_errors = (psycopg.Error,)

    def open_handle(self):
        return psycopg.connect(build_dsn(self.config), autocommit=True, **self.config.options)

    def prepare_sql(self, sql: str, bindings: list) -> str:
        return sql.replace("%", "%%").replace("?", "%s")

    def last_insert_id(self):
        row = self.select_one("SELECT lastval() AS id")
        return row["id"] if row else None
