"""
Typed where/having/join predicate nodes.

A builder keeps an ordered list of these nodes. SQL text and bindings are
both produced by walking the same list, so a node that renders ``n``
placeholders always contributes exactly ``n`` values, in the same order.
"""
from dataclasses import dataclass
from typing import Any


class Raw:
    def __init__(self, expression: str):
        self.expression = expression

    def __str__(self):
        return self.expression

    def __repr__(self):
        return f"Raw({self.expression!r})"

    def __eq__(self, other):
        return isinstance(other, Raw) and other.expression == self.expression

    def __hash__(self):
        return hash(("Raw", self.expression))


OPERATORS = (
    "=", "<", ">", "<=", ">=", "<>", "!=",
    "like", "not like", "ilike", "not ilike",
    "in", "not in", "between", "not between",
)


def invalid_operator(operator: Any) -> bool:
    return not isinstance(operator, str) or operator.lower() not in OPERATORS


def is_subquery(value: Any) -> bool:
    return hasattr(value, "to_sql") and hasattr(value, "get_bindings") and not isinstance(value, type)


def placeholder(value: Any) -> str:
    if isinstance(value, Raw):
        return value.expression
    if is_subquery(value):
        return f"({value.to_sql()})"
    return "?"


def parameters(value: Any) -> list:
    if isinstance(value, Raw):
        return []
    if is_subquery(value):
        return list(value.get_bindings())
    return [value]


class Predicate:
    boolean: str

    def sql(self) -> str:
        raise NotImplementedError

    def values(self) -> list:
        return []


@dataclass(frozen=True)
class Basic(Predicate):
    column: Any
    operator: str
    value: Any
    boolean: str = "and"

    def sql(self) -> str:
        return f"{self.column} {self.operator} {placeholder(self.value)}"

    def values(self) -> list:
        return parameters(self.value)


@dataclass(frozen=True)
class In(Predicate):
    column: Any
    items: Any
    negated: bool = False
    boolean: str = "and"

    def sql(self) -> str:
        keyword = "NOT IN" if self.negated else "IN"
        if isinstance(self.items, Raw):
            return f"{self.column} {keyword} ({self.items.expression})"
        if is_subquery(self.items):
            return f"{self.column} {keyword} ({self.items.to_sql()})"
        return f"{self.column} {keyword} ({', '.join(placeholder(v) for v in self.items)})"

    def values(self) -> list:
        if isinstance(self.items, Raw):
            return []
        if is_subquery(self.items):
            return list(self.items.get_bindings())
        return [p for item in self.items for p in parameters(item)]


@dataclass(frozen=True)
class Null(Predicate):
    column: Any
    negated: bool = False
    boolean: str = "and"

    def sql(self) -> str:
        return f"{self.column} IS NOT NULL" if self.negated else f"{self.column} IS NULL"


@dataclass(frozen=True)
class Between(Predicate):
    column: Any
    low: Any
    high: Any
    negated: bool = False
    boolean: str = "and"

    def sql(self) -> str:
        keyword = "NOT BETWEEN" if self.negated else "BETWEEN"
        return f"{self.column} {keyword} {placeholder(self.low)} AND {placeholder(self.high)}"

    def values(self) -> list:
        return parameters(self.low) + parameters(self.high)


@dataclass(frozen=True)
class Date(Predicate):
    column: Any
    operator: str
    value: Any
    boolean: str = "and"

    def sql(self) -> str:
        return f"DATE({self.column}) {self.operator} {placeholder(self.value)}"

    def values(self) -> list:
        return parameters(self.value)


@dataclass(frozen=True)
class Column(Predicate):
    first: Any
    operator: str
    second: Any
    boolean: str = "and"

    def sql(self) -> str:
        return f"{self.first} {self.operator} {self.second}"


@dataclass(frozen=True)
class RawWhere(Predicate):
    expression: str
    bindings: tuple = ()
    boolean: str = "and"

    def sql(self) -> str:
        return self.expression

    def values(self) -> list:
        return list(self.bindings)


@dataclass(frozen=True)
class Exists(Predicate):
    query: Any
    negated: bool = False
    boolean: str = "and"

    def sql(self) -> str:
        keyword = "NOT EXISTS" if self.negated else "EXISTS"
        return f"{keyword} ({self.query.to_sql()})"

    def values(self) -> list:
        return list(self.query.get_bindings())


@dataclass(frozen=True)
class Nested(Predicate):
    predicates: tuple
    boolean: str = "and"

    def sql(self) -> str:
        return f"({compile_predicates(self.predicates)})"

    def values(self) -> list:
        return bindings_of(self.predicates)


def compile_predicates(predicates) -> str:
    """Join nodes with their connectors; the first node never carries one."""
    parts = []
    for index, predicate in enumerate(predicates):
        if index == 0:
            parts.append(predicate.sql())
        else:
            parts.append(f"{predicate.boolean.upper()} {predicate.sql()}")
    return " ".join(parts)


def bindings_of(predicates) -> list:
    return [value for predicate in predicates for value in predicate.values()]
