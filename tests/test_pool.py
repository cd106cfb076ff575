from unittest import TestCase, mock

from dbcore.core_services.ConnectionPool import ConnectionPool
from dbcore.core_services.Exceptions import ConfigurationError, DatabaseException


class FakeConnection:
    def __init__(self, number):
        self.number = number
        self.open = True
        self.transactions = 0

    def is_open(self):
        return self.open

    def transaction_level(self):
        return self.transactions

    def disconnect(self):
        self.open = False


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_pool(**kwargs):
    created = []

    def factory():
        connection = FakeConnection(len(created) + 1)
        created.append(connection)
        return connection

    clock = FakeClock()
    pool = ConnectionPool(factory, clock=clock, **kwargs)
    return pool, created, clock


class TestPoolBounds(TestCase):
    def test_prewarms_min_connections(self):
        pool, created, _ = make_pool(min_connections=2, max_connections=4)

        self.assertEqual(len(created), 2)
        self.assertEqual(pool.current_size(), 2)
        self.assertEqual(pool.min_size(), 2)
        self.assertEqual(pool.max_size(), 4)

    def test_invalid_bounds(self):
        for bounds in ({"min_connections": 5, "max_connections": 2},
                       {"min_connections": -1},
                       {"max_connections": 0}):
            with self.assertRaises(ConfigurationError):
                make_pool(**bounds)

    def test_acquire_reuses_oldest_idle_first(self):
        pool, created, _ = make_pool(min_connections=2, max_connections=2)

        first = pool.acquire()

        self.assertIs(first, created[0])
        self.assertEqual(pool.current_size(), 1)
        self.assertEqual(pool.checked_out(), 1)


class TestExhaustion(TestCase):
    def test_temporary_connection_is_closed_on_release(self):
        pool, created, _ = make_pool(min_connections=1, max_connections=2)
        held = [pool.acquire(), pool.acquire()]

        with self.assertLogs("orm.pool", level="WARNING"):
            extra = pool.acquire()

        self.assertEqual(len(created), 3)
        pool.release(extra)
        self.assertFalse(extra.is_open())

        for connection in held:
            pool.release(connection)

        self.assertEqual(pool.current_size(), 2)
        self.assertEqual(pool.checked_out(), 0)

    def test_releasing_twice_is_ignored(self):
        pool, _, _ = make_pool(min_connections=1, max_connections=2)
        connection = pool.acquire()

        pool.release(connection)
        pool.release(connection)

        self.assertEqual(pool.current_size(), 1)


class TestRelease(TestCase):
    def test_closed_connections_are_dropped(self):
        pool, _, _ = make_pool(min_connections=1, max_connections=2)
        connection = pool.acquire()
        connection.disconnect()

        pool.release(connection)

        self.assertEqual(pool.current_size(), 0)

    def test_connection_in_transaction_is_discarded(self):
        pool, _, _ = make_pool(min_connections=1, max_connections=2)
        connection = pool.acquire()
        connection.transactions = 1

        with self.assertLogs("orm.pool", level="WARNING"):
            pool.release(connection)

        self.assertFalse(connection.is_open())
        self.assertEqual(pool.current_size(), 0)

    def test_context_manager_returns_connection(self):
        pool, created, _ = make_pool(min_connections=1, max_connections=1)

        with pool.connection() as connection:
            self.assertIs(connection, created[0])
            self.assertEqual(pool.current_size(), 0)

        self.assertEqual(pool.current_size(), 1)


class TestPruning(TestCase):
    def test_idle_connections_past_timeout_are_closed(self):
        pool, created, clock = make_pool(min_connections=2, max_connections=3, idle_timeout=60)

        clock.now = 61
        self.assertEqual(pool.prune_idle_connections(), 2)

        self.assertEqual(pool.current_size(), 0)
        self.assertTrue(all(not connection.is_open() for connection in created))

    def test_acquire_prunes_before_handing_out(self):
        pool, created, clock = make_pool(min_connections=1, max_connections=2, idle_timeout=60)

        clock.now = 100
        connection = pool.acquire()

        self.assertIsNot(connection, created[0])
        self.assertFalse(created[0].is_open())


class TestFactoryFailure(TestCase):
    def test_failure_is_reraised_and_reservation_released(self):
        failure = DatabaseException("down", DatabaseException.CONNECTION_FAILED)
        factory = mock.Mock(side_effect=[failure, FakeConnection(1)])
        pool = ConnectionPool(factory, min_connections=0, max_connections=1)

        with self.assertLogs("orm.pool", level="ERROR"):
            with self.assertRaises(DatabaseException):
                pool.acquire()

        connection = pool.acquire()
        pool.release(connection)

        self.assertEqual(pool.current_size(), 1)
        self.assertEqual(pool.checked_out(), 0)

    def test_from_config_uses_pool_settings(self):
        with mock.patch("dbcore.core_services.ConnectionPool.ConnectionFactory.make") as make:
            make.side_effect = lambda config, name: FakeConnection(name)
            pool = ConnectionPool.from_config(
                {"driver": "sqlite", "database": "app.db", "pool": {"min_connections": 2, "max_connections": 5}},
                name="reports",
            )

        self.assertEqual(make.call_count, 2)
        self.assertEqual(pool.max_size(), 5)
        self.assertEqual(pool.name, "reports")
