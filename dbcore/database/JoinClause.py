from typing import Any, Callable

from dbcore.database.Predicates import (
    Basic, Column, Nested, Null, In, Raw, bindings_of, compile_predicates, invalid_operator,
)


class JoinClause:
    """
    The ``ON`` tree of one join. ``on`` compares two columns and binds
    nothing; ``where`` compares a column with a value and binds it.
    """

    def __init__(self, type: str, table: str):
        self.type = type.lower()
        self.table = table
        self.predicates: list = []

    def on(self, first: Any, operator: str = None, second: Any = None, boolean: str = "and") -> "JoinClause":
        if callable(first) and not isinstance(first, (str, Raw)):
            return self.where_nested(first, boolean)

        if second is None:
            operator, second = "=", operator

        self.predicates.append(Column(first, operator, second, boolean))
        return self

    def or_on(self, first: Any, operator: str = None, second: Any = None) -> "JoinClause":
        return self.on(first, operator, second, "or")

    def where(self, column: Any, operator: Any = None, value: Any = None, boolean: str = "and") -> "JoinClause":
        if invalid_operator(operator):
            operator, value = "=", operator

        if value is None:
            self.predicates.append(Null(column, operator != "=", boolean))
        else:
            self.predicates.append(Basic(column, operator, value, boolean))
        return self

    def or_where(self, column: Any, operator: Any = None, value: Any = None) -> "JoinClause":
        return self.where(column, operator, value, "or")

    def where_null(self, column: Any, boolean: str = "and", negated: bool = False) -> "JoinClause":
        self.predicates.append(Null(column, negated, boolean))
        return self

    def where_in(self, column: Any, values, boolean: str = "and", negated: bool = False) -> "JoinClause":
        self.predicates.append(In(column, tuple(values), negated, boolean))
        return self

    def where_nested(self, callback: Callable[["JoinClause"], Any], boolean: str = "and") -> "JoinClause":
        nested = JoinClause(self.type, self.table)
        callback(nested)
        if nested.predicates:
            self.predicates.append(Nested(tuple(nested.predicates), boolean))
        return self

    def to_sql(self) -> str:
        if not self.predicates:
            return f"{self.type.upper()} JOIN {self.table}"
        return f"{self.type.upper()} JOIN {self.table} ON {compile_predicates(self.predicates)}"

    def get_bindings(self) -> list:
        return bindings_of(self.predicates)
