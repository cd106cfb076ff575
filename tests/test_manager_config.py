import json
import os
import tempfile
import threading
import typing
from unittest import TestCase, mock

from dbcore import manage
from dbcore.core_services import ConnectionFactory
from dbcore.core_services.DatabaseConfig import DatabaseConfig, build_dsn
from dbcore.core_services.DatabaseManager import DatabaseManager
from dbcore.core_services.Exceptions import ConfigurationError
from dbcore.core_services.Sqlite3Connection import Sqlite3Connection
from dbcore.database.ActiveRecord import ActiveRecord
from dbcore.database.Runtime import ModelRegistry, OrmContext, set_default_context


class Account(ActiveRecord):
    __table__ = "accounts"
    __fillable__ = ["name"]


class TestDatabaseConfig(TestCase):
    def test_unknown_keys_become_options(self):
        config = DatabaseConfig.from_dict({
            "driver": "MYSQL", "user": "root", "ssl_disabled": True, "pool": {"max_connections": 3},
        })

        self.assertEqual(config.driver, "mysql")
        self.assertEqual(config.username, "root")
        self.assertEqual(config.port, 3306)
        self.assertEqual(config.options, {"ssl_disabled": True})
        self.assertEqual(config.max_connections, 3)

    def test_from_dict_accepts_a_config(self):
        config = DatabaseConfig(driver="sqlite", database=":memory:")

        self.assertIs(DatabaseConfig.from_dict(config), config)
        hints = typing.get_type_hints(DatabaseConfig.from_dict)
        self.assertEqual(hints["config"], dict[str, typing.Any] | DatabaseConfig)

    def test_mysql_dsn(self):
        dsn = build_dsn(DatabaseConfig(driver="mysql", host="db", database="app", username="u", password="p"))

        self.assertEqual(dsn["host"], "db")
        self.assertEqual(dsn["port"], 3306)
        self.assertEqual(dsn["user"], "u")
        self.assertEqual(dsn["charset"], "utf8mb4")

    def test_pgsql_dsn(self):
        dsn = build_dsn(DatabaseConfig(driver="pgsql", host="db", database="app", username="u"))
        self.assertEqual(dsn, "host=db port=5432 dbname=app user=u")

    def test_sqlite_dsn(self):
        self.assertEqual(build_dsn(DatabaseConfig(driver="sqlite", database=":memory:")), ":memory:")
        with self.assertRaises(ConfigurationError):
            build_dsn(DatabaseConfig(driver="sqlite", database=""))

    def test_unknown_driver(self):
        with self.assertRaises(ConfigurationError):
            build_dsn(DatabaseConfig(driver="oracle"))
        with self.assertRaises(ConfigurationError):
            ConnectionFactory.make({"driver": "oracle"})

    def test_memory_sqlite_never_pools(self):
        self.assertFalse(DatabaseConfig(driver="sqlite", database=":memory:").uses_pool())
        self.assertTrue(DatabaseConfig(driver="sqlite", database="app.db").uses_pool())
        self.assertFalse(DatabaseConfig(driver="mysql", pooling=False).uses_pool())

    @mock.patch("dbcore.core_services.DatabaseConfig.load_dotenv")
    def test_from_env(self, load_dotenv):
        env = {
            "DB_DRIVER": "pgsql", "DB_HOST": "pg", "DB_DATABASE": "app",
            "DB_POOL_MAX": "4", "DB_LOG_QUERIES": "true", "DB_POOLING": "off",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = DatabaseConfig.from_env()

        load_dotenv.assert_called_once_with()
        self.assertEqual(config.driver, "pgsql")
        self.assertEqual(config.port, 5432)
        self.assertEqual(config.max_connections, 4)
        self.assertTrue(config.log_queries)
        self.assertFalse(config.pooling)


class TestDatabaseManager(TestCase):
    def setUp(self):
        self.manager = DatabaseManager({"default": {"driver": "sqlite", "database": ":memory:"}})

    def tearDown(self):
        self.manager.disconnect_all()

    def test_connection_is_cached_per_name(self):
        connection = self.manager.connection()

        self.assertIsInstance(connection, Sqlite3Connection)
        self.assertIs(self.manager.connection("default"), connection)

    def test_missing_connection_name(self):
        with self.assertRaises(ConfigurationError) as caught:
            self.manager.connection("reports")
        self.assertEqual(caught.exception.connection_name, "reports")

    def test_memory_database_bypasses_the_pool(self):
        with self.manager.using() as connection:
            self.assertIs(connection, self.manager.connection())
        self.assertEqual(self.manager.pools, {})

    def test_file_database_uses_a_pool(self):
        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, "app.db")
            self.manager.add_connection("file", {"driver": "sqlite", "database": path, "max_connections": 2})

            with self.manager.using("file") as connection:
                connection.statement("CREATE TABLE t (a INTEGER)")
                self.assertEqual(self.manager.pool("file").checked_out(), 1)

            self.assertEqual(self.manager.pool("file").checked_out(), 0)
            self.manager.disconnect("file")

    def test_transaction_commits(self):
        self.manager.statement("CREATE TABLE t (a INTEGER)")

        with self.manager.transaction() as connection:
            connection.insert("INSERT INTO t VALUES (?)", [1])

        self.assertEqual(self.manager.select_one("SELECT COUNT(*) AS n FROM t").n, 1)

    def test_default_connection(self):
        self.manager.add_connection("other", {"driver": "sqlite"})
        self.manager.set_default_connection("other")
        self.assertEqual(self.manager.get_default_connection(), "other")

    def test_table_returns_builder_bound_to_manager(self):
        builder = self.manager.table("users")
        self.assertEqual(builder.to_sql(), "SELECT * FROM users")


class TestManagerTransactions(TestCase):
    def setUp(self):
        self.directory = tempfile.TemporaryDirectory()
        self.manager = DatabaseManager({"default": {
            "driver": "sqlite", "database": os.path.join(self.directory.name, "app.db"),
            "max_connections": 3, "check_same_thread": False,
        }})
        self.previous = set_default_context(OrmContext(self.manager, ModelRegistry()))
        self.manager.statement("CREATE TABLE accounts (id INTEGER PRIMARY KEY, name TEXT)")

    def tearDown(self):
        set_default_context(self.previous)
        self.manager.disconnect_all()
        self.directory.cleanup()

    def test_records_written_in_a_failed_transaction_are_rolled_back(self):
        with self.assertRaises(RuntimeError):
            with self.manager.transaction():
                Account.create(name="Ann")
                raise RuntimeError("abort")

        self.assertEqual(Account.query().count(), 0)

    def test_records_see_their_own_uncommitted_writes(self):
        with self.manager.transaction() as connection:
            Account.create(name="Ann")
            self.assertEqual(Account.query().count(), 1)
            self.assertEqual(connection.transaction_level(), 1)

        self.assertEqual(Account.query().count(), 1)
        self.assertEqual(self.manager.pool().checked_out(), 0)

    def test_nested_blocks_share_one_connection(self):
        with self.manager.using() as outer:
            with self.manager.using() as inner:
                self.assertIs(inner, outer)
            self.assertIs(self.manager.active_connection(), outer)
            self.assertEqual(self.manager.pool().checked_out(), 1)

        self.assertIsNone(self.manager.active_connection())
        self.assertEqual(self.manager.pool().checked_out(), 0)

    def test_other_threads_borrow_their_own_connection(self):
        borrowed = []

        def borrow():
            connection = self.manager.acquire()
            borrowed.append(connection)
            self.manager.release(connection)

        with self.manager.using() as connection:
            worker = threading.Thread(target=borrow)
            worker.start()
            worker.join()

        self.assertIsNot(borrowed[0], connection)


class TestManageCommands(TestCase):
    def setUp(self):
        self.manager = DatabaseManager({"default": {"driver": "sqlite", "database": ":memory:"}})
        self.manager.statement("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        self.manager.insert("INSERT INTO users (name) VALUES (?)", ["Ann"])

    def tearDown(self):
        self.manager.disconnect_all()

    def test_status(self):
        info = manage.status(self.manager)

        self.assertEqual(info["driver"], "sqlite")
        self.assertEqual(info["target"], ":memory:")
        self.assertFalse(info["pooling"])

    def test_run_query(self):
        rows = manage.run_query(self.manager, "SELECT name FROM users WHERE id = ?", ["1"])
        self.assertEqual(rows, [{"name": "Ann"}])

    def test_main_prints_rows(self):
        with mock.patch.object(manage.DatabaseManager, "from_env", return_value=self.manager), \
                mock.patch("builtins.print") as printed:
            code = manage.main(["db:query", "SELECT name FROM users"])

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(printed.call_args.args[0]), [{"name": "Ann"}])

    def test_main_reports_database_errors(self):
        with mock.patch.object(manage.DatabaseManager, "from_env", return_value=self.manager), \
                mock.patch("builtins.print") as printed:
            code = manage.main(["db:query", "SELECT * FROM missing"])

        self.assertEqual(code, 1)
        self.assertIn("no such table", json.loads(printed.call_args.args[0])["message"])

    def test_main_exits_2_when_the_database_is_unreachable(self):
        with tempfile.TemporaryDirectory() as directory:
            self.manager.add_connection("broken", {
                "driver": "sqlite", "database": os.path.join(directory, "missing", "app.db"),
            })
            with mock.patch.object(manage.DatabaseManager, "from_env", return_value=self.manager), \
                    mock.patch("builtins.print") as printed:
                code = manage.main(["--connection", "broken", "db:query", "SELECT 1"])

        self.assertEqual(code, 2)
        error = json.loads(printed.call_args.args[0])
        self.assertEqual(error["code"], 1001)
        self.assertTrue(error["message"].startswith("Failed to connect to database 'broken'"))
