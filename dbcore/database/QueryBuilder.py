import json
import time
from datetime import date, datetime
from typing import Any, Callable, List, Tuple

from dbcore.core_services.Connection import get_logger
from dbcore.core_services.Exceptions import ConfigurationError, RecordNotFound
from dbcore.database.Collection import Collection
from dbcore.database.JoinClause import JoinClause
from dbcore.database.Predicates import (
    Basic, Between, Column, Date, Exists, In, Nested, Null, Raw, RawWhere,
    bindings_of, compile_predicates, invalid_operator, is_subquery,
)

WHERE_IN_CHUNK_SIZE = 1000
SLOW_QUERY_SECONDS = 1.0

BINDING_CATEGORIES = ("select", "from", "join", "where", "having", "order", "union")

# LIMIT written when only an offset is set
UNBOUNDED_LIMITS = {"sqlite": "-1", "mysql": "18446744073709551615"}


def raw(expression: str) -> Raw:
    return Raw(expression)


def _is_closure(value: Any) -> bool:
    return callable(value) and not isinstance(value, (type, Raw, str)) and not is_subquery(value)


def _normalize_date(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return value


class QueryBuilder:
    """
    Fluent SQL builder.

    Filters, joins and havings are stored as typed predicate nodes; ``to_sql``
    and ``get_bindings`` both walk those nodes, so the ``?`` placeholders and
    the binding list always line up.

    A builder runs on the connection it is pinned to, or else borrows one
    from its manager's pool for the duration of each statement.
    """

    def __init__(self, manager=None, connection=None, connection_name: str = None):
        self.manager = manager
        self.connection = connection
        self.connection_name = connection_name
        self.model = None
        self.__table__ = None
        self.__primary_key__ = "id"

        self.columns: List[Any] = ["*"]
        self.select_bindings: List[Any] = []
        self.distinct_flag = False
        self.alias = None
        self.joins: List[JoinClause] = []
        self.wheres: list = []
        self.group_by_columns: List[str] = []
        self.havings: list = []
        self.order_by_clauses: List[Tuple[Any, str]] = []
        self.order_bindings: List[Any] = []
        self.limit_count = None
        self.offset_count = None
        self.cache_ttl = None
        self.metrics: dict[str, Any] = {}
        self.logger = get_logger("orm.sql")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def new_query(self) -> "QueryBuilder":
        return QueryBuilder(manager=self.manager, connection=self.connection,
                            connection_name=self.connection_name)

    def clone(self) -> "QueryBuilder":
        cloned = self.__class__(manager=self.manager, connection=self.connection,
                                connection_name=self.connection_name)
        cloned.model = self.model
        cloned.__table__ = self.__table__
        cloned.__primary_key__ = self.__primary_key__

        cloned.columns = self.columns[:]
        cloned.select_bindings = self.select_bindings[:]
        cloned.distinct_flag = self.distinct_flag
        cloned.alias = self.alias
        cloned.joins = self.joins[:]
        cloned.wheres = self.wheres[:]
        cloned.group_by_columns = self.group_by_columns[:]
        cloned.havings = self.havings[:]
        cloned.order_by_clauses = self.order_by_clauses[:]
        cloned.order_bindings = self.order_bindings[:]
        cloned.limit_count = self.limit_count
        cloned.offset_count = self.offset_count
        cloned.cache_ttl = self.cache_ttl
        return cloned

    def table(self, table_name: str, alias: str = None) -> "QueryBuilder":
        self.__table__ = table_name
        if alias:
            self.alias = alias
        return self

    from_ = table

    def set_model(self, model) -> "QueryBuilder":
        """Hydrate results into ``model`` records instead of plain rows."""
        self.model = model
        self.__table__ = model.get_table()
        self.__primary_key__ = model.__primary_key__ or "id"
        return self

    def get_model(self):
        return self.model

    def select(self, *columns) -> "QueryBuilder":
        self.columns = []
        self.select_bindings = []
        return self.add_select(*columns)

    def add_select(self, *columns) -> "QueryBuilder":
        # select(["a", "b"]); a tuple is an (expression, alias) pair
        if len(columns) == 1 and isinstance(columns[0], list):
            columns = columns[0]

        if self.columns == ["*"] and columns:
            self.columns = []

        for col in columns:
            if isinstance(col, tuple):
                expression, alias = col
                if is_subquery(expression):
                    self.columns.append(f"({expression.to_sql()}) AS {alias}")
                    self.select_bindings.extend(expression.get_bindings())
                else:
                    self.columns.append(f"{expression} AS {alias}")
            else:
                self.columns.append(col if isinstance(col, Raw) else str(col))
        return self

    def select_raw(self, expression: str, bindings: list = None) -> "QueryBuilder":
        if self.columns == ["*"]:
            self.columns = []
        self.columns.append(Raw(expression))
        self.select_bindings.extend(bindings or [])
        return self

    def distinct(self) -> "QueryBuilder":
        self.distinct_flag = True
        return self

    def when(self, condition: Any, callback: Callable[["QueryBuilder", Any], Any],
             default: Callable[["QueryBuilder", Any], Any] = None) -> "QueryBuilder":
        if condition:
            callback(self, condition)
        elif default:
            default(self, condition)
        return self

    def unless(self, condition: Any, callback: Callable, default: Callable = None) -> "QueryBuilder":
        if not condition:
            callback(self, condition)
        elif default:
            default(self, condition)
        return self

    # ------------------------------------------------------------------
    # Where
    # ------------------------------------------------------------------

    def where(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> "QueryBuilder":
        if isinstance(column, dict):
            for key, val in column.items():
                self.where(key, "=", val, boolean)
            return self

        if isinstance(column, QueryBuilder):
            if column.wheres:
                self.wheres.append(Nested(tuple(column.wheres), boolean))
            return self

        if _is_closure(column):
            return self.where_nested(column, boolean)

        # unknown operators are shorthand for "=": where("votes", 100)
        if invalid_operator(operator):
            operator, value = "=", operator

        operator = operator.lower()

        if _is_closure(value):
            sub = self.new_query()
            value(sub)
            value = sub

        if value is None:
            return self.where_null(column, boolean, operator != "=")

        if operator in ("in", "not in") and isinstance(value, (list, tuple, set, Collection)):
            return self.where_in(column, value, boolean, operator == "not in")

        if operator in ("between", "not between") and isinstance(value, (list, tuple)):
            return self.where_between(column, value, boolean, operator == "not between")

        self.wheres.append(Basic(column, operator.upper(), value, boolean))
        return self

    def or_where(self, column: Any, operator: Any = None, value: Any = None) -> "QueryBuilder":
        return self.where(column, operator, value, "or")

    def where_not(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> "QueryBuilder":
        sub = self.new_query().where(column, operator, value)
        if sub.wheres:
            self.wheres.append(RawWhere(f"NOT {Nested(tuple(sub.wheres)).sql()}", tuple(sub.get_bindings()), boolean))
        return self

    def where_nested(self, callback: Callable[["QueryBuilder"], Any], boolean: str = "and") -> "QueryBuilder":
        sub = self.new_query()
        callback(sub)
        if sub.wheres:
            self.wheres.append(Nested(tuple(sub.wheres), boolean))
        return self

    nest = where_nested

    def or_nest(self, callback: Callable[["QueryBuilder"], Any]) -> "QueryBuilder":
        return self.where_nested(callback, "or")

    @staticmethod
    def _unique_values(values) -> list:
        unique: list = []
        seen = set()
        for value in values:
            if value is None:
                continue
            try:
                if value in seen:
                    continue
                seen.add(value)
            except TypeError:
                if value in unique:
                    continue
            unique.append(value)
        return unique

    def where_in(self, column: Any, values: Any, boolean: str = "and", negated: bool = False) -> "QueryBuilder":
        """
        ``None`` entries are dropped and duplicates removed before binding.
        An empty IN matches nothing; an empty NOT IN adds no constraint.
        Lists longer than 1000 are split into chunks inside one group, OR-ed
        for IN and AND-ed for NOT IN.
        """
        if _is_closure(values):
            sub = self.new_query()
            values(sub)
            values = sub

        if isinstance(values, Raw) or is_subquery(values):
            self.wheres.append(In(column, values, negated, boolean))
            return self

        if isinstance(values, Collection):
            values = list(values)
        elif isinstance(values, dict):
            values = list(values.values())

        values = self._unique_values(values)

        if not values:
            if not negated:
                self.wheres.append(RawWhere("1 = 0", (), boolean))
            return self

        if len(values) > WHERE_IN_CHUNK_SIZE:
            return self._where_in_chunked(column, values, boolean, negated)

        self.wheres.append(In(column, tuple(values), negated, boolean))
        return self

    def _where_in_chunked(self, column: Any, values: list, boolean: str, negated: bool) -> "QueryBuilder":
        connector = "and" if negated else "or"
        chunks = [values[i:i + WHERE_IN_CHUNK_SIZE] for i in range(0, len(values), WHERE_IN_CHUNK_SIZE)]
        nodes = tuple(
            In(column, tuple(chunk), negated, "and" if index == 0 else connector)
            for index, chunk in enumerate(chunks)
        )
        self.wheres.append(Nested(nodes, boolean))
        return self

    def or_where_in(self, column: Any, values: Any) -> "QueryBuilder":
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_in(column, values, boolean, True)

    def or_where_not_in(self, column: Any, values: Any) -> "QueryBuilder":
        return self.where_in(column, values, "or", True)

    def where_null(self, column: Any, boolean: str = "and", negated: bool = False) -> "QueryBuilder":
        if isinstance(column, (list, tuple)):
            for col in column:
                self.where_null(col, boolean, negated)
            return self
        self.wheres.append(Null(column, negated, boolean))
        return self

    def or_where_null(self, column: Any) -> "QueryBuilder":
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_null(column, boolean, True)

    def or_where_not_null(self, column: Any) -> "QueryBuilder":
        return self.where_null(column, "or", True)

    def where_between(self, column: Any, values, boolean: str = "and", negated: bool = False) -> "QueryBuilder":
        low, high = list(values)[:2]
        self.wheres.append(Between(column, low, high, negated, boolean))
        return self

    def or_where_between(self, column: Any, values) -> "QueryBuilder":
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values, boolean: str = "and") -> "QueryBuilder":
        return self.where_between(column, values, boolean, True)

    def or_where_not_between(self, column: Any, values) -> "QueryBuilder":
        return self.where_between(column, values, "or", True)

    def where_date(self, column: Any, operator: Any = "=", value: Any = None, boolean: str = "and") -> "QueryBuilder":
        if value is None:
            operator, value = "=", operator
        if invalid_operator(operator):
            operator = "="
        self.wheres.append(Date(column, operator, _normalize_date(value), boolean))
        return self

    def or_where_date(self, column: Any, operator: Any = "=", value: Any = None) -> "QueryBuilder":
        return self.where_date(column, operator, value, "or")

    def where_column(self, first: Any, operator: Any, second: Any = None, boolean: str = "and") -> "QueryBuilder":
        if second is None:
            operator, second = "=", operator
        self.wheres.append(Column(first, operator, second, boolean))
        return self

    def or_where_column(self, first: Any, operator: Any, second: Any = None) -> "QueryBuilder":
        return self.where_column(first, operator, second, "or")

    def where_raw(self, sql: str, bindings: list = None, boolean: str = "and") -> "QueryBuilder":
        self.wheres.append(RawWhere(sql, tuple(bindings or ()), boolean))
        return self

    def or_where_raw(self, sql: str, bindings: list = None) -> "QueryBuilder":
        return self.where_raw(sql, bindings, "or")

    def where_exists(self, query: Any, boolean: str = "and", negated: bool = False) -> "QueryBuilder":
        if _is_closure(query):
            sub = self.new_query()
            query(sub)
            query = sub
        self.wheres.append(Exists(query, negated, boolean))
        return self

    def where_not_exists(self, query: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_exists(query, boolean, True)

    @staticmethod
    def prepare_value(value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value)
        return value

    def where_full_text(self, columns: Any, value: str, mode: str = None, boolean: str = "and") -> "QueryBuilder":
        """MySQL ``MATCH ... AGAINST``. ``mode`` is ``boolean``, ``natural`` or ``expanded``."""
        if self.get_driver() != "mysql":
            raise ConfigurationError(f"Full-text search is not supported on [{self.get_driver()}].",
                                     self.connection_name)

        if isinstance(columns, (list, tuple)):
            columns = ", ".join(columns)

        modes = {
            None: "",
            "natural": " IN NATURAL LANGUAGE MODE",
            "boolean": " IN BOOLEAN MODE",
            "expanded": " WITH QUERY EXPANSION",
        }
        if mode not in modes:
            raise ValueError(f"Unsupported full-text mode [{mode}].")

        self.wheres.append(RawWhere(f"MATCH({columns}) AGAINST (?{modes[mode]})", (value,), boolean))
        return self

    def or_where_full_text(self, columns: Any, value: str, mode: str = None) -> "QueryBuilder":
        return self.where_full_text(columns, value, mode, "or")

    def where_json(self, column: str, path: str, value: Any, operator: str = "=", boolean: str = "and") -> "QueryBuilder":
        """Compare a value inside a JSON column (MySQL and SQLite ``JSON_EXTRACT``)."""
        if self.get_driver() not in ("mysql", "sqlite"):
            raise ConfigurationError(f"JSON path queries are not supported on [{self.get_driver()}].",
                                     self.connection_name)
        if invalid_operator(operator):
            operator = "="
        if not path.startswith("$"):
            path = f"$.{path}"
        self.wheres.append(RawWhere(f"JSON_EXTRACT({column}, ?) {operator} ?",
                                    (path, self.prepare_value(value)), boolean))
        return self

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def join(self, table: str, first: Any, operator: Any = None, second: Any = None,
             type: str = "inner", where: bool = False) -> "QueryBuilder":
        join = JoinClause(type, table)

        if _is_closure(first):
            first(join)
        elif where:
            join.where(first, operator, second)
        else:
            join.on(first, operator, second)

        self.joins.append(join)
        return self

    def left_join(self, table: str, first: Any, operator: Any = None, second: Any = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "left")

    def right_join(self, table: str, first: Any, operator: Any = None, second: Any = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "right")

    def join_where(self, table: str, first: Any, operator: Any, value: Any, type: str = "inner") -> "QueryBuilder":
        return self.join(table, first, operator, value, type, True)

    def cross_join(self, table: str, first: Any = None, operator: Any = None, second: Any = None) -> "QueryBuilder":
        if first is not None:
            return self.join(table, first, operator, second, "cross")
        self.joins.append(JoinClause("cross", table))
        return self

    # ------------------------------------------------------------------
    # Grouping, ordering, paging
    # ------------------------------------------------------------------

    def group_by(self, *columns) -> "QueryBuilder":
        if len(columns) == 1 and isinstance(columns[0], (list, tuple)):
            columns = columns[0]
        self.group_by_columns.extend(str(c) for c in columns)
        return self

    def having(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> "QueryBuilder":
        if _is_closure(column):
            sub = self.new_query()
            column(sub)
            if sub.havings:
                self.havings.append(Nested(tuple(sub.havings), boolean))
            return self

        if invalid_operator(operator):
            operator, value = "=", operator

        if value is None:
            self.havings.append(Null(column, operator != "=", boolean))
        else:
            self.havings.append(Basic(column, operator, value, boolean))
        return self

    def or_having(self, column: Any, operator: Any = None, value: Any = None) -> "QueryBuilder":
        return self.having(column, operator, value, "or")

    def having_raw(self, sql: str, bindings: list = None, boolean: str = "and") -> "QueryBuilder":
        self.havings.append(RawWhere(sql, tuple(bindings or ()), boolean))
        return self

    def order_by(self, column: Any, direction: str = "asc") -> "QueryBuilder":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError('Order direction must be "asc" or "desc".')
        self.order_by_clauses.append((column, direction))
        return self

    def order_by_desc(self, column: Any) -> "QueryBuilder":
        return self.order_by(column, "desc")

    def latest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "asc")

    def order_by_raw(self, sql: str, bindings: list = None) -> "QueryBuilder":
        self.order_by_clauses.append((Raw(sql), ""))
        self.order_bindings.extend(bindings or [])
        return self

    def reorder(self) -> "QueryBuilder":
        self.order_by_clauses = []
        self.order_bindings = []
        return self

    def limit(self, value: int) -> "QueryBuilder":
        if value is not None and value >= 0:
            self.limit_count = int(value)
        return self

    take = limit

    def offset(self, value: int) -> "QueryBuilder":
        self.offset_count = max(0, int(value))
        return self

    skip = offset

    def for_page(self, page: int, per_page: int = 15) -> "QueryBuilder":
        return self.offset((page - 1) * per_page).limit(per_page)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _compile_columns(self) -> str:
        columns = ", ".join(str(c) for c in self.columns) or "*"
        return f"SELECT DISTINCT {columns}" if self.distinct_flag else f"SELECT {columns}"

    def _compile_from(self) -> str:
        if not self.__table__:
            raise ConfigurationError("No table set on query builder.")
        return f"FROM {self.__table__} AS {self.alias}" if self.alias else f"FROM {self.__table__}"

    def _compile_orders(self) -> str:
        parts = []
        for column, direction in self.order_by_clauses:
            parts.append(str(column) if isinstance(column, Raw) else f"{column} {direction.upper()}")
        return "ORDER BY " + ", ".join(parts)

    def _compile_wheres(self) -> str:
        return f"WHERE {compile_predicates(self.wheres)}" if self.wheres else ""

    def to_sql(self) -> str:
        sql = [self._compile_columns(), self._compile_from()]

        if self.joins:
            sql.append(" ".join(join.to_sql() for join in self.joins))
        if self.wheres:
            sql.append(self._compile_wheres())
        if self.group_by_columns:
            sql.append("GROUP BY " + ", ".join(self.group_by_columns))
        if self.havings:
            sql.append("HAVING " + compile_predicates(self.havings))
        if self.order_by_clauses:
            sql.append(self._compile_orders())
        if self.limit_count is not None:
            sql.append(f"LIMIT {self.limit_count}")
        elif self.offset_count is not None and self.get_driver() in UNBOUNDED_LIMITS:
            # sqlite and mysql only accept OFFSET after a LIMIT
            sql.append(f"LIMIT {UNBOUNDED_LIMITS[self.get_driver()]}")
        if self.offset_count is not None:
            sql.append(f"OFFSET {self.offset_count}")

        return " ".join(sql)

    @property
    def bindings(self) -> dict[str, list]:
        bindings = {category: [] for category in BINDING_CATEGORIES}
        bindings["select"] = list(self.select_bindings)
        bindings["join"] = [value for join in self.joins for value in join.get_bindings()]
        bindings["where"] = bindings_of(self.wheres)
        bindings["having"] = bindings_of(self.havings)
        bindings["order"] = list(self.order_bindings)
        return bindings

    def get_bindings(self) -> list:
        bindings = self.bindings
        return [value for category in BINDING_CATEGORIES for value in bindings[category]]

    def dump_sql(self) -> "QueryBuilder":
        self.logger.debug("%s | %s", self.to_sql(), self.get_bindings())
        return self

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _manager(self):
        if self.manager is None:
            from dbcore.database.Runtime import get_default_context
            self.manager = get_default_context().manager
        return self.manager

    def get_driver(self) -> str:
        if self.connection is not None:
            return self.connection.config.driver
        return self._manager().get_config(self.connection_name).driver

    def _run(self, callback: Callable[[Any], Any]) -> Any:
        if self.connection is not None:
            return callback(self.connection)
        with self._manager().using(self.connection_name) as connection:
            return callback(connection)

    def _select(self) -> list:
        sql, bindings = self.to_sql(), self.get_bindings()
        return self._run(lambda connection: connection.select(sql, bindings))

    def _record_metrics(self, start_time: float, sql: str, bindings: list, result_count: int):
        execution_time = time.perf_counter() - start_time
        self.metrics = {
            "sql": sql,
            "bindings": bindings,
            "execution_time": execution_time,
            "result_count": result_count,
        }
        if execution_time > SLOW_QUERY_SECONDS:
            self.logger.warning("Slow query detected: %.3fs | %s | %s", execution_time, sql, bindings)

    def get_metrics(self) -> dict[str, Any]:
        return self.metrics

    # ------------------------------------------------------------------
    # Result cache
    # ------------------------------------------------------------------

    def cache(self, ttl: float = 300) -> "QueryBuilder":
        """Serve ``get()`` from the context's result cache for ``ttl`` seconds."""
        self.cache_ttl = ttl
        return self

    def no_cache(self) -> "QueryBuilder":
        self.cache_ttl = None
        return self

    def _query_cache(self):
        if self.model is not None:
            return self.model.get_context().query_cache
        from dbcore.database.Runtime import get_default_context
        return get_default_context().query_cache

    def _cache_connection_name(self) -> str:
        if self.connection is not None:
            return getattr(self.connection, "name", None)
        return self.connection_name or self._manager().get_default_connection()

    def clear_cache(self) -> "QueryBuilder":
        self._query_cache().clear()
        return self

    def get_cache_stats(self) -> dict[str, int]:
        return self._query_cache().stats()

    def get(self) -> Collection:
        sql, bindings = self.to_sql(), self.get_bindings()
        start_time = time.perf_counter()

        rows = None
        if self.cache_ttl is not None:
            cache = self._query_cache()
            cache_key = cache.key_for(self._cache_connection_name(), sql, bindings)
            rows = cache.get(cache_key)
            if rows is not None:
                self.logger.debug("Cache hit: %s | %s", sql, bindings)

        if rows is None:
            rows = self._run(lambda connection: connection.select(sql, bindings))
            if self.cache_ttl is not None:
                cache.put(cache_key, rows, self.cache_ttl, self.__table__)
        self._record_metrics(start_time, sql, bindings, len(rows))

        if self.model is not None:
            return self.model.hydrate(rows, connection_name=self.connection_name)
        return Collection(rows)

    def first(self):
        return self.clone().limit(1).get().first()

    def first_or_fail(self):
        result = self.first()
        if result is None:
            raise RecordNotFound(self.model.__name__ if self.model else self.__table__)
        return result

    def find(self, id_: Any):
        return self.clone().where(self.__primary_key__, "=", id_).first()

    def value(self, column: str) -> Any:
        row = self.clone().select(column).limit(1)._select()
        if not row:
            return None
        row = row[0]
        return row[column] if column in row else next(iter(row.values()))

    def value_or_fail(self, column: str) -> Any:
        row = self.clone().select(column).limit(1)._select()
        if not row:
            raise RecordNotFound(self.model.__name__ if self.model else self.__table__)
        row = row[0]
        return row[column] if column in row else next(iter(row.values()))

    def pluck(self, column: str, key: str = None) -> Collection:
        columns = [column] if key is None else [column, key]
        rows = Collection(self.clone().select(*columns)._select())
        plain = lambda name: name.split(".")[-1].split(" as ")[-1].split(" AS ")[-1]
        return rows.pluck(plain(column), plain(key) if key else None)

    def exists(self) -> bool:
        query = self.clone().reorder().select(Raw("1 AS present")).limit(1)
        return bool(query._select())

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def chunk(self, size: int, callback: Callable[[Collection, int], Any]) -> bool:
        page = 1
        while True:
            results = self.clone().for_page(page, size).get()
            if results.is_empty():
                break
            if callback(results, page) is False:
                return False
            if results.count() < size:
                break
            page += 1
        return True

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def aggregate(self, function: str, columns=("*",)) -> Any:
        """Swap the projection for ``FUNCTION(columns)``, run it, then restore."""
        if isinstance(columns, str):
            columns = (columns,)

        previous_columns, previous_bindings = self.columns, self.select_bindings
        previous_distinct = self.distinct_flag
        column_sql = ", ".join(str(c) for c in columns)
        if previous_distinct and column_sql != "*":
            column_sql = f"DISTINCT {column_sql}"

        self.columns = [Raw(f"{function.upper()}({column_sql}) AS aggregate")]
        self.select_bindings = []
        self.distinct_flag = False
        try:
            rows = self._select()
        finally:
            self.columns = previous_columns
            self.select_bindings = previous_bindings
            self.distinct_flag = previous_distinct

        if not rows:
            return None
        return rows[0].get("aggregate")

    def count(self, columns: Any = "*") -> int:
        return int(self.aggregate("count", columns) or 0)

    def min(self, column: str) -> Any:
        return self.aggregate("min", column)

    def max(self, column: str) -> Any:
        return self.aggregate("max", column)

    def sum(self, column: str) -> Any:
        return self.aggregate("sum", column) or 0

    def avg(self, column: str) -> Any:
        return self.aggregate("avg", column)

    average = avg

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def compile_insert(self, values: dict | list[dict]) -> tuple[str, list]:
        if isinstance(values, dict):
            values = [values]

        columns = list(values[0].keys())
        if not columns:
            # a row of column defaults
            if self.get_driver() == "mysql":
                return f"INSERT INTO {self.__table__} () VALUES ()", []
            return f"INSERT INTO {self.__table__} DEFAULT VALUES", []

        groups = []
        bindings = []
        for row in values:
            placeholders = []
            for column in columns:
                value = row.get(column)
                if isinstance(value, Raw):
                    placeholders.append(value.expression)
                else:
                    placeholders.append("?")
                    bindings.append(value)
            groups.append(f"({', '.join(placeholders)})")

        sql = f"INSERT INTO {self.__table__} ({', '.join(columns)}) VALUES {', '.join(groups)}"
        return sql, bindings

    def _write(self, callback: Callable[[Any], Any]) -> Any:
        result = self._run(callback)
        self._query_cache().forget_table(self.__table__)
        return result

    def insert(self, values: dict | list[dict]) -> bool:
        """Insert one row or many; an empty dict inserts a row of column defaults."""
        if isinstance(values, list) and not values:
            return True
        sql, bindings = self.compile_insert(values)
        return self._write(lambda connection: connection.insert(sql, bindings))

    def insert_get_id(self, values: dict) -> Any:
        sql, bindings = self.compile_insert(values)

        def callback(connection):
            connection.insert(sql, bindings)
            return connection.last_insert_id()

        return self._write(callback)

    def compile_update(self, values: dict) -> tuple[str, list]:
        """New values first, then the where bindings."""
        sets = []
        bindings = []
        for column, value in values.items():
            if isinstance(value, Raw):
                sets.append(f"{column} = {value.expression}")
            else:
                sets.append(f"{column} = ?")
                bindings.append(value)

        sql = f"UPDATE {self.__table__} SET {', '.join(sets)}"
        if self.wheres:
            sql += f" {self._compile_wheres()}"
        return sql, bindings + bindings_of(self.wheres)

    def update(self, values: dict) -> int:
        if not values:
            return 0
        sql, bindings = self.compile_update(values)
        return self._write(lambda connection: connection.update(sql, bindings))

    def increment(self, column: str, amount: int | float = 1, extra: dict = None) -> int:
        if not isinstance(amount, (int, float)) or isinstance(amount, bool):
            raise ValueError("Non-numeric value passed to increment method.")
        return self.update({column: Raw(f"{column} + {amount}"), **(extra or {})})

    def decrement(self, column: str, amount: int | float = 1, extra: dict = None) -> int:
        if not isinstance(amount, (int, float)) or isinstance(amount, bool):
            raise ValueError("Non-numeric value passed to decrement method.")
        return self.update({column: Raw(f"{column} - {amount}"), **(extra or {})})

    def compile_delete(self) -> tuple[str, list]:
        sql = f"DELETE FROM {self.__table__}"
        if self.wheres:
            sql += f" {self._compile_wheres()}"
        return sql, bindings_of(self.wheres)

    def delete(self, id_: Any = None) -> int:
        if id_ is not None:
            self.where(self.__primary_key__, "=", id_)
        sql, bindings = self.compile_delete()
        return self._write(lambda connection: connection.delete(sql, bindings))

    def truncate(self) -> bool:
        if self.get_driver() == "sqlite":
            sql = f"DELETE FROM {self.__table__}"
        else:
            sql = f"TRUNCATE TABLE {self.__table__}"
        return self._write(lambda connection: connection.statement(sql))

    # ------------------------------------------------------------------
    # Model scopes
    # ------------------------------------------------------------------

    def scope(self, name: str, *args: Any, **kwargs: Any) -> "QueryBuilder":
        method = getattr(self.model, f"scope_{name}", None) if self.model is not None else None
        if method is None:
            raise AttributeError(f"Scope [{name}] is not defined.")
        result = method(self, *args, **kwargs)
        return self if result is None else result

    def __getattr__(self, name):
        # query.active() runs the attached model's scope_active(query)
        model = self.__dict__.get("model")
        if model is not None and not name.startswith("_"):
            if any(f"scope_{name}" in vars(klass) for klass in model.__mro__):
                return lambda *args, **kwargs: self.scope(name, *args, **kwargs)
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __repr__(self):
        return f"<QueryBuilder {self.to_sql() if self.__table__ else '(no table)'}>"
