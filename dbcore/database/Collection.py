import inspect
import json
import math
import random as _random
from collections import Counter
from functools import cmp_to_key
from itertools import zip_longest
from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")

_MISSING = object()


def _accepts_arity(callback: Callable, count: int) -> bool:
    try:
        params = inspect.signature(callback).parameters.values()
    except (TypeError, ValueError):
        return False

    positional = 0
    for param in params:
        if param.kind == param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= count


def _accepts_key(callback: Callable) -> bool:
    return _accepts_arity(callback, 2)


def _with_key(callback: Callable) -> Callable[[Any, Any], Any]:
    """Adapt ``callback`` so it can always be called as ``callback(value, key)``."""
    if _accepts_key(callback):
        return callback
    return lambda value, key: callback(value)


def _value(default: Any) -> Any:
    return default() if callable(default) else default


def data_get(target: Any, key: Any, default: Any = None) -> Any:
    """Read ``key`` (dotted for nested access) from a mapping, sequence or object."""
    if key is None:
        return target
    if callable(key):
        return key(target)

    for segment in str(key).split("."):
        if isinstance(target, Collection):
            target = target.all()

        if isinstance(target, dict):
            if segment not in target:
                return _value(default)
            target = target[segment]
        elif isinstance(target, (list, tuple)):
            try:
                target = target[int(segment)]
            except (ValueError, IndexError):
                return _value(default)
        elif hasattr(target, "get_attribute") and callable(target.get_attribute):
            target = target.get_attribute(segment)
        elif hasattr(target, segment):
            target = getattr(target, segment)
        else:
            return _value(default)
    return target


def _value_retriever(value: Any) -> Callable[[Any, Any], Any]:
    if value is None:
        return lambda item, key: item
    if callable(value):
        return _with_key(value)
    return lambda item, key: data_get(item, value)


def _loose_equals(a: Any, b: Any) -> bool:
    if a == b:
        return True
    if isinstance(a, (int, float, str)) and isinstance(b, (int, float, str)) \
            and not isinstance(a, bool) and not isinstance(b, bool):
        return str(a) == str(b)
    return False


def _strict_equals(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def _operator_for_where(key: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Callable[[Any, Any], bool]:
    if operator is _MISSING:
        operator, value = "=", True
    elif value is _MISSING:
        operator, value = "=", operator

    def compare(item, _key):
        retrieved = data_get(item, key)

        if operator in ("=", "=="):
            if value is True:
                return bool(retrieved)
            return _loose_equals(retrieved, value)
        if operator in ("!=", "<>"):
            return not _loose_equals(retrieved, value)
        if operator == "===":
            return _strict_equals(retrieved, value)
        if operator == "!==":
            return not _strict_equals(retrieved, value)

        if retrieved is None or value is None:
            return False
        try:
            if operator == "<":
                return retrieved < value
            if operator == ">":
                return retrieved > value
            if operator == "<=":
                return retrieved <= value
            if operator == ">=":
                return retrieved >= value
        except TypeError:
            return False
        raise ValueError(f"Unsupported operator [{operator}].")

    return compare


def _sort_key(value: Any):
    # None sorts first instead of raising against other types
    return (value is not None, value)


def _is_sequential(items: dict) -> bool:
    return all(key == index for index, key in enumerate(items))


class Collection:
    """
    Ordered, keyed container for rows and records.

    Keys behave like PHP arrays: a list becomes ``0..n-1``, a dict keeps its
    keys. ``all()`` returns a list while the keys are sequential and a dict
    otherwise, so key-preserving operations stay visible to the caller.

    Two families of methods:

    * functional methods return a new Collection and leave this one alone
      (``filter``, ``map``, ``sort``, ``group_by`` ...);
    * mutating methods change this instance in place (``push``, ``pop``,
      ``shift``, ``prepend``, ``put``, ``pull``, ``forget``, ``transform``).
      They return ``self`` except ``pop``/``shift``/``pull``, which return
      the removed value.

    Callbacks receive ``(value, key)`` when they accept two positional
    arguments and ``(value)`` otherwise.
    """

    def __init__(self, items: Any = None):
        self.items: dict[Any, Any] = self._normalize(items)

    @staticmethod
    def _normalize(items: Any) -> dict:
        if items is None:
            return {}
        if isinstance(items, Collection):
            return dict(items.items)
        if isinstance(items, dict):
            return dict(items)
        if isinstance(items, (str, bytes)):
            return {0: items}
        if hasattr(items, "to_array") and not isinstance(items, Iterable):
            return Collection._normalize(items.to_array())
        if isinstance(items, Iterable):
            return dict(enumerate(items))
        return {0: items}

    def _new(self, items: Any) -> "Collection":
        return self.__class__(items)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def make(cls, items: Any = None) -> "Collection":
        return cls(items)

    @classmethod
    def times(cls, number: int, callback: Callable[[int], Any] = None) -> "Collection":
        if number < 1:
            return cls()
        numbers = range(1, number + 1)
        if callback is None:
            return cls(list(numbers))
        return cls([callback(n) for n in numbers])

    @classmethod
    def range(cls, start: int, end: int, step: int = 1) -> "Collection":
        """Inclusive on both ends."""
        if start <= end:
            return cls(list(range(start, end + 1, abs(step))))
        return cls(list(range(start, end - 1, -abs(step))))

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def all(self) -> list | dict:
        if _is_sequential(self.items):
            return list(self.items.values())
        return dict(self.items)

    def get(self, key: Any, default: Any = None) -> Any:
        if key in self.items:
            return self.items[key]
        return _value(default)

    def has(self, *keys: Any) -> bool:
        if len(keys) == 1 and isinstance(keys[0], (list, tuple)):
            keys = keys[0]
        return all(key in self.items for key in keys)

    def keys(self) -> "Collection":
        return self._new(list(self.items.keys()))

    def values(self) -> "Collection":
        return self._new(list(self.items.values()))

    def count(self) -> int:
        return len(self.items)

    def is_empty(self) -> bool:
        return not self.items

    def is_not_empty(self) -> bool:
        return bool(self.items)

    def first(self, callback: Callable = None, default: Any = None) -> Any:
        if callback is None:
            for value in self.items.values():
                return value
            return _value(default)

        callback = _with_key(callback)
        for key, value in self.items.items():
            if callback(value, key):
                return value
        return _value(default)

    def first_where(self, key: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Any:
        return self.first(_operator_for_where(key, operator, value))

    def last(self, callback: Callable = None, default: Any = None) -> Any:
        if callback is None:
            if not self.items:
                return _value(default)
            return next(reversed(self.items.values()))
        return self.reverse().first(callback, default)

    def search(self, value: Any, strict: bool = False) -> Any:
        """Key of the first matching item, or ``None``."""
        if callable(value):
            callback = _with_key(value)
            for key, item in self.items.items():
                if callback(item, key):
                    return key
            return None

        equals = _strict_equals if strict else _loose_equals
        for key, item in self.items.items():
            if equals(item, value):
                return key
        return None

    def random(self, number: int = None) -> Any:
        if not self.items:
            raise ValueError("Cannot pick a random item from an empty collection.")
        if number is None:
            return _random.choice(list(self.items.values()))
        if number > len(self.items):
            raise ValueError(
                f"You requested {number} items, but there are only {len(self.items)} items available."
            )
        chosen = set(_random.sample(list(self.items.keys()), number))
        return self._new({k: v for k, v in self.items.items() if k in chosen})

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def _present(self, callback: Any = None) -> list:
        retriever = _value_retriever(callback)
        return [v for v in (retriever(item, key) for key, item in self.items.items()) if v is not None]

    def sum(self, callback: Any = None):
        return sum(self._present(callback))

    def avg(self, callback: Any = None):
        values = self._present(callback)
        if not values:
            return None
        return sum(values) / len(values)

    average = avg

    def median(self, key: Any = None):
        values = sorted(self._present(key))
        count = len(values)
        if count == 0:
            return None

        middle = count // 2
        if count % 2:
            return values[middle]
        return (values[middle - 1] + values[middle]) / 2

    def mode(self, key: Any = None) -> list | None:
        if not self.items:
            return None

        counts = Counter(self._present(key))
        if not counts:
            return None
        highest = max(counts.values())
        return sorted((value for value, count in counts.items() if count == highest), key=_sort_key)

    def min(self, callback: Any = None):
        values = self._present(callback)
        return min(values) if values else None

    def max(self, callback: Any = None):
        values = self._present(callback)
        return max(values) if values else None

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def filter(self, callback: Callable = None) -> "Collection":
        """Keeps keys."""
        if callback is None:
            return self._new({k: v for k, v in self.items.items() if v})
        callback = _with_key(callback)
        return self._new({k: v for k, v in self.items.items() if callback(v, k)})

    def reject(self, callback: Any) -> "Collection":
        if callable(callback):
            callback = _with_key(callback)
            return self._new({k: v for k, v in self.items.items() if not callback(v, k)})
        return self._new({k: v for k, v in self.items.items() if not _loose_equals(v, callback)})

    def where(self, key: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "Collection":
        if callable(key):
            return self.filter(key)
        return self.filter(_operator_for_where(key, operator, value))

    def where_strict(self, key: Any, value: Any) -> "Collection":
        return self.where(key, "===", value)

    def where_in(self, key: Any, values: Iterable, strict: bool = False) -> "Collection":
        values = list(Collection(values).items.values())
        equals = _strict_equals if strict else _loose_equals
        return self.filter(lambda item: any(equals(data_get(item, key), v) for v in values))

    def where_in_strict(self, key: Any, values: Iterable) -> "Collection":
        return self.where_in(key, values, True)

    def where_not_in(self, key: Any, values: Iterable, strict: bool = False) -> "Collection":
        values = list(Collection(values).items.values())
        equals = _strict_equals if strict else _loose_equals
        return self.reject(lambda item: any(equals(data_get(item, key), v) for v in values))

    def where_between(self, key: Any, values) -> "Collection":
        low, high = list(values)[:2]
        return self.where(key, ">=", low).where(key, "<=", high)

    def where_not_between(self, key: Any, values) -> "Collection":
        low, high = list(values)[:2]

        def outside(item):
            retrieved = data_get(item, key)
            return retrieved is not None and (retrieved < low or retrieved > high)

        return self.filter(outside)

    def where_null(self, key: Any = None) -> "Collection":
        return self.filter(lambda item: data_get(item, key) is None)

    def where_not_null(self, key: Any = None) -> "Collection":
        return self.filter(lambda item: data_get(item, key) is not None)

    def where_instance_of(self, kind: type | tuple) -> "Collection":
        return self.filter(lambda item: isinstance(item, kind))

    def contains(self, key: Any, operator: Any = _MISSING, value: Any = _MISSING) -> bool:
        if operator is _MISSING:
            if callable(key):
                callback = _with_key(key)
                return any(callback(v, k) for k, v in self.items.items())
            return any(_loose_equals(v, key) for v in self.items.values())
        return self.where(key, operator, value).is_not_empty()

    def contains_strict(self, value: Any) -> bool:
        if callable(value):
            return self.contains(value)
        return any(_strict_equals(v, value) for v in self.items.values())

    def every(self, key: Any, operator: Any = _MISSING, value: Any = _MISSING) -> bool:
        if operator is _MISSING and callable(key):
            callback = _with_key(key)
            return all(callback(v, k) for k, v in self.items.items())
        if operator is _MISSING:
            return self.every(_operator_for_where(key, "=", True))
        return self.every(_operator_for_where(key, operator, value))

    def unique(self, key: Any = None, strict: bool = False) -> "Collection":
        """Keeps the first occurrence and its key."""
        retriever = _value_retriever(key)
        equals = _strict_equals if strict else _loose_equals
        seen: list = []
        result = {}
        for k, item in self.items.items():
            marker = retriever(item, k)
            if any(equals(marker, s) for s in seen):
                continue
            seen.append(marker)
            result[k] = item
        return self._new(result)

    # ------------------------------------------------------------------
    # Conditionals
    # ------------------------------------------------------------------

    def _apply(self, callback: Callable, value: Any):
        result = callback(self, value) if _accepts_arity(callback, 2) else callback(self)
        return self if result is None else result

    def when(self, value: Any, callback: Callable, default: Callable = None):
        value = _value(value)
        if value:
            return self._apply(callback, value)
        if default is not None:
            return self._apply(default, value)
        return self

    def unless(self, value: Any, callback: Callable, default: Callable = None):
        value = _value(value)
        if not value:
            return self._apply(callback, value)
        if default is not None:
            return self._apply(default, value)
        return self

    def when_empty(self, callback: Callable, default: Callable = None):
        return self.when(self.is_empty(), callback, default)

    def when_not_empty(self, callback: Callable, default: Callable = None):
        return self.when(self.is_not_empty(), callback, default)

    def unless_empty(self, callback: Callable, default: Callable = None):
        return self.when_not_empty(callback, default)

    def unless_not_empty(self, callback: Callable, default: Callable = None):
        return self.when_empty(callback, default)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map(self, callback: Callable) -> "Collection":
        """Keeps keys."""
        callback = _with_key(callback)
        return self._new({k: callback(v, k) for k, v in self.items.items()})

    def map_spread(self, callback: Callable) -> "Collection":
        def spread(chunk, key):
            chunk = list(chunk.items.values()) if isinstance(chunk, Collection) else list(chunk)
            return callback(*chunk, key) if _accepts_arity(callback, len(chunk) + 1) else callback(*chunk)

        return self._new({k: spread(v, k) for k, v in self.items.items()})

    def map_to_dictionary(self, callback: Callable) -> dict:
        callback = _with_key(callback)
        dictionary: dict = {}
        for key, item in self.items.items():
            pair = callback(item, key)
            for group, value in pair.items():
                dictionary.setdefault(group, []).append(value)
        return dictionary

    def map_to_groups(self, callback: Callable) -> "Collection":
        return self._new(self.map_to_dictionary(callback)).map(lambda group: self._new(group))

    def map_with_keys(self, callback: Callable) -> "Collection":
        callback = _with_key(callback)
        result = {}
        for key, item in self.items.items():
            result.update(callback(item, key))
        return self._new(result)

    def flat_map(self, callback: Callable) -> "Collection":
        return self.map(callback).collapse()

    def pluck(self, value: Any, key: Any = None) -> "Collection":
        if key is None:
            return self._new([data_get(item, value) for item in self.items.values()])

        result = {}
        for item in self.items.values():
            item_key = data_get(item, key)
            result[item_key] = data_get(item, value)
        return self._new(result)

    def reduce(self, callback: Callable, initial: Any = None) -> Any:
        pass_key = _accepts_arity(callback, 3)
        carry = initial
        for key, value in self.items.items():
            carry = callback(carry, value, key) if pass_key else callback(carry, value)
        return carry

    def each(self, callback: Callable) -> "Collection":
        """Stops at the first callback returning ``False``."""
        callback = _with_key(callback)
        for key, value in list(self.items.items()):
            if callback(value, key) is False:
                break
        return self

    def each_spread(self, callback: Callable) -> "Collection":
        for chunk in list(self.items.values()):
            chunk = list(chunk.items.values()) if isinstance(chunk, Collection) else list(chunk)
            if callback(*chunk) is False:
                break
        return self

    def implode(self, value: Any, glue: str = None) -> str:
        first = self.first()
        if isinstance(first, (dict, Collection)) or hasattr(first, "get_attribute"):
            return (glue or "").join(str(v) for v in self.pluck(value).items.values())
        return str(value).join(str(v) for v in self.items.values())

    def join(self, glue: str, final_glue: str = "") -> str:
        if final_glue == "":
            return self.implode(glue)

        values = [str(v) for v in self.items.values()]
        if not values:
            return ""
        if len(values) == 1:
            return values[0]
        return glue.join(values[:-1]) + final_glue + values[-1]

    # ------------------------------------------------------------------
    # Grouping and reshaping
    # ------------------------------------------------------------------

    def group_by(self, group_by: Any, preserve_keys: bool = False) -> "Collection":
        """
        Group items by a key, dotted path or callback. A callback may return a
        list of keys, in which case the item lands in every one of those groups.
        Passing a list of groupers groups recursively.
        """
        next_groups = None
        if isinstance(group_by, (list, tuple)) and not callable(group_by):
            group_by, *next_groups = group_by

        retriever = _value_retriever(group_by)
        results: dict[Any, dict] = {}

        for key, value in self.items.items():
            group_keys = retriever(value, key)
            if not isinstance(group_keys, (list, tuple, set)):
                group_keys = [group_keys]

            for group_key in group_keys:
                if isinstance(group_key, bool):
                    group_key = int(group_key)
                group = results.setdefault(group_key, {})
                if preserve_keys:
                    group[key] = value
                else:
                    group[len(group)] = value

        result = self._new({k: self._new(v) for k, v in results.items()})
        if next_groups:
            return result.map(lambda group: group.group_by(list(next_groups), preserve_keys))
        return result

    def key_by(self, key_by: Any) -> "Collection":
        retriever = _value_retriever(key_by)
        result = {}
        for key, item in self.items.items():
            resolved = retriever(item, key)
            if isinstance(resolved, bool):
                resolved = int(resolved)
            result[resolved] = item
        return self._new(result)

    def collapse(self) -> "Collection":
        results = []
        for value in self.items.values():
            if isinstance(value, Collection):
                results.extend(value.items.values())
            elif isinstance(value, (list, tuple)):
                results.extend(value)
            elif isinstance(value, dict):
                results.extend(value.values())
        return self._new(results)

    def flatten(self, depth: float = math.inf) -> "Collection":
        def walk(items, depth):
            result = []
            for item in items:
                if isinstance(item, Collection):
                    item = list(item.items.values())
                elif isinstance(item, dict):
                    item = list(item.values())
                if not isinstance(item, (list, tuple)):
                    result.append(item)
                elif depth <= 1:
                    result.extend(item)
                else:
                    result.extend(walk(item, depth - 1))
            return result

        return self._new(walk(self.items.values(), depth))

    def flip(self) -> "Collection":
        return self._new({v: k for k, v in self.items.items()})

    def cross_join(self, *lists: Iterable) -> "Collection":
        results = [[]]
        for values in (list(self.items.values()), *[list(Collection(l).items.values()) for l in lists]):
            results = [combo + [value] for combo in results for value in values]
        return self._new(results)

    def chunk(self, size: int) -> "Collection":
        """Chunks keep their original keys."""
        if size <= 0:
            return self._new([])
        pairs = list(self.items.items())
        return self._new([self._new(dict(pairs[i:i + size])) for i in range(0, len(pairs), size)])

    def split(self, number_of_groups: int) -> "Collection":
        if self.is_empty() or number_of_groups <= 0:
            return self._new([])

        values = list(self.items.values())
        group_size, remain = divmod(len(values), number_of_groups)
        groups = []
        start = 0
        for index in range(number_of_groups):
            size = group_size + (1 if index < remain else 0)
            if size:
                groups.append(self._new(values[start:start + size]))
                start += size
        return self._new(groups)

    def sliding(self, size: int = 2, step: int = 1) -> "Collection":
        chunks = (self.count() - size) // step + 1
        if chunks <= 0:
            return self._new([])
        return self._new([self.slice(n * step, size) for n in range(chunks)])

    def nth(self, step: int, offset: int = 0) -> "Collection":
        return self._new([
            item for position, item in enumerate(self.items.values()) if position % step == offset
        ])

    def pad(self, size: int, value: Any) -> "Collection":
        values = list(self.items.values())
        missing = abs(size) - len(values)
        if missing <= 0:
            return self._new(values)
        if size > 0:
            return self._new(values + [value] * missing)
        return self._new([value] * missing + values)

    def zip(self, *items: Iterable) -> "Collection":
        others = [list(Collection(i).items.values()) for i in items]
        return self._new([self._new(list(row)) for row in zip_longest(self.items.values(), *others)])

    def combine(self, values: Iterable) -> "Collection":
        values = list(Collection(values).items.values())
        keys = list(self.items.values())
        if len(keys) != len(values):
            raise ValueError("Both parameters should have an equal number of elements.")
        return self._new(dict(zip(keys, values)))

    def concat(self, source: Iterable) -> "Collection":
        result = self._new(self)
        for item in Collection(source).items.values():
            result.push(item)
        return result

    def reverse(self) -> "Collection":
        """Keeps keys."""
        return self._new(dict(reversed(list(self.items.items()))))

    def shuffle(self, seed: int = None) -> "Collection":
        pairs = list(self.items.items())
        _random.Random(seed).shuffle(pairs)
        return self._new(dict(pairs))

    # ------------------------------------------------------------------
    # Set operations
    # ------------------------------------------------------------------

    def diff(self, items: Any) -> "Collection":
        other = list(Collection(items).items.values())
        return self._new({k: v for k, v in self.items.items() if not any(_loose_equals(v, o) for o in other)})

    def diff_keys(self, items: Any) -> "Collection":
        other = Collection(items).items
        return self._new({k: v for k, v in self.items.items() if k not in other})

    def diff_assoc(self, items: Any) -> "Collection":
        other = Collection(items).items
        return self._new({
            k: v for k, v in self.items.items() if k not in other or not _loose_equals(other[k], v)
        })

    def intersect(self, items: Any) -> "Collection":
        other = list(Collection(items).items.values())
        return self._new({k: v for k, v in self.items.items() if any(_loose_equals(v, o) for o in other)})

    def intersect_by_keys(self, items: Any) -> "Collection":
        other = Collection(items).items
        return self._new({k: v for k, v in self.items.items() if k in other})

    def union(self, items: Any) -> "Collection":
        result = dict(self.items)
        for key, value in Collection(items).items.items():
            result.setdefault(key, value)
        return self._new(result)

    @staticmethod
    def _array_merge(first: dict, second: dict) -> dict:
        result = {}
        index = 0
        for source in (first, second):
            for key, value in source.items():
                if isinstance(key, int):
                    result[index] = value
                    index += 1
                else:
                    result[key] = value
        return result

    def merge(self, items: Any) -> "Collection":
        """Integer keys are appended and renumbered; other keys are overwritten."""
        return self._new(self._array_merge(self.items, Collection(items).items))

    def merge_recursive(self, items: Any) -> "Collection":
        def merge(first: dict, second: dict) -> dict:
            result = dict(first)
            index = sum(1 for k in first if isinstance(k, int))
            for key, value in second.items():
                if isinstance(key, int):
                    while index in result:
                        index += 1
                    result[index] = value
                    index += 1
                elif key in result:
                    current = result[key]
                    if isinstance(current, dict) and isinstance(value, dict):
                        result[key] = merge(current, value)
                    else:
                        current = current if isinstance(current, list) else [current]
                        value = value if isinstance(value, list) else [value]
                        result[key] = current + value
                else:
                    result[key] = value
            return result

        return self._new(merge(self.items, Collection(items).items))

    def replace(self, items: Any) -> "Collection":
        result = dict(self.items)
        result.update(Collection(items).items)
        return self._new(result)

    def replace_recursive(self, items: Any) -> "Collection":
        def replace(first: dict, second: dict) -> dict:
            result = dict(first)
            for key, value in second.items():
                if isinstance(result.get(key), dict) and isinstance(value, dict):
                    result[key] = replace(result[key], value)
                else:
                    result[key] = value
            return result

        return self._new(replace(self.items, Collection(items).items))

    def except_(self, *keys: Any) -> "Collection":
        if len(keys) == 1 and isinstance(keys[0], (list, tuple, set, Collection)):
            keys = list(Collection(keys[0]).items.values())
        return self._new({k: v for k, v in self.items.items() if k not in keys})

    def only(self, *keys: Any) -> "Collection":
        if len(keys) == 1 and keys[0] is None:
            return self._new(self)
        if len(keys) == 1 and isinstance(keys[0], (list, tuple, set, Collection)):
            keys = list(Collection(keys[0]).items.values())
        return self._new({k: v for k, v in self.items.items() if k in keys})

    # ------------------------------------------------------------------
    # Sorting
    # ------------------------------------------------------------------

    def sort(self, callback: Callable = None) -> "Collection":
        """Keeps keys. ``callback`` is a two-argument comparator."""
        pairs = list(self.items.items())
        if callback is None:
            pairs.sort(key=lambda pair: _sort_key(pair[1]))
        else:
            pairs.sort(key=cmp_to_key(lambda a, b: callback(a[1], b[1])))
        return self._new(dict(pairs))

    def sort_desc(self) -> "Collection":
        pairs = sorted(self.items.items(), key=lambda pair: _sort_key(pair[1]), reverse=True)
        return self._new(dict(pairs))

    def sort_by(self, callback: Any, descending: bool = False) -> "Collection":
        """Keeps keys."""
        retriever = _value_retriever(callback)
        pairs = sorted(
            self.items.items(),
            key=lambda pair: _sort_key(retriever(pair[1], pair[0])),
            reverse=descending,
        )
        return self._new(dict(pairs))

    def sort_by_desc(self, callback: Any) -> "Collection":
        return self.sort_by(callback, True)

    def sort_keys(self, descending: bool = False) -> "Collection":
        return self._new(dict(sorted(self.items.items(), key=lambda pair: _sort_key(pair[0]), reverse=descending)))

    def sort_keys_desc(self) -> "Collection":
        return self.sort_keys(True)

    # ------------------------------------------------------------------
    # Slicing
    # ------------------------------------------------------------------

    def slice(self, offset: int, length: int = None) -> "Collection":
        """Keeps keys. Negative offset and length count from the end."""
        pairs = list(self.items.items())
        total = len(pairs)
        start = offset if offset >= 0 else max(0, total + offset)
        if length is None:
            end = total
        elif length >= 0:
            end = start + length
        else:
            end = total + length
        return self._new(dict(pairs[start:end]))

    def skip(self, count: int) -> "Collection":
        return self.slice(count)

    def take(self, limit: int) -> "Collection":
        if limit < 0:
            return self.slice(limit, abs(limit))
        return self.slice(0, limit)

    @staticmethod
    def _predicate(value: Any) -> Callable[[Any, Any], bool]:
        if callable(value):
            return _with_key(value)
        return lambda item, key: _loose_equals(item, value)

    def skip_until(self, value: Any) -> "Collection":
        predicate = self._predicate(value)
        result = {}
        skipping = True
        for key, item in self.items.items():
            if skipping and predicate(item, key):
                skipping = False
            if not skipping:
                result[key] = item
        return self._new(result)

    def skip_while(self, value: Any) -> "Collection":
        predicate = self._predicate(value)
        return self.skip_until(lambda item, key: not predicate(item, key))

    def take_until(self, value: Any) -> "Collection":
        predicate = self._predicate(value)
        result = {}
        for key, item in self.items.items():
            if predicate(item, key):
                break
            result[key] = item
        return self._new(result)

    def take_while(self, value: Any) -> "Collection":
        predicate = self._predicate(value)
        return self.take_until(lambda item, key: not predicate(item, key))

    # ------------------------------------------------------------------
    # Mutating (in place)
    # ------------------------------------------------------------------

    def _next_index(self) -> int:
        int_keys = [k for k in self.items if isinstance(k, int) and not isinstance(k, bool)]
        return max(int_keys) + 1 if int_keys else 0

    def push(self, *values: Any) -> "Collection":
        """In place; returns ``self``."""
        for value in values:
            self.items[self._next_index()] = value
        return self

    add = push

    def pop(self) -> Any:
        """In place; returns the removed last value (``None`` when empty)."""
        if not self.items:
            return None
        key = next(reversed(self.items))
        return self.items.pop(key)

    def shift(self) -> Any:
        """In place; returns the removed first value and renumbers integer keys."""
        if not self.items:
            return None
        key = next(iter(self.items))
        value = self.items.pop(key)
        self.items = self._array_merge(self.items, {})
        return value

    def prepend(self, value: Any, key: Any = None) -> "Collection":
        """In place; returns ``self``. Without a key, integer keys are renumbered."""
        if key is None:
            self.items = self._array_merge({0: value}, self.items)
        else:
            rest = {k: v for k, v in self.items.items() if k != key}
            self.items = {key: value, **rest}
        return self

    def put(self, key: Any, value: Any) -> "Collection":
        """In place; returns ``self``."""
        self.items[key] = value
        return self

    def pull(self, key: Any, default: Any = None) -> Any:
        """In place; removes ``key`` and returns its value."""
        if key in self.items:
            return self.items.pop(key)
        return _value(default)

    def forget(self, keys: Any) -> "Collection":
        """In place; returns ``self``."""
        if not isinstance(keys, (list, tuple, set)):
            keys = [keys]
        for key in keys:
            self.items.pop(key, None)
        return self

    def transform(self, callback: Callable) -> "Collection":
        """In place; returns ``self``."""
        self.items = self.map(callback).items
        return self

    # ------------------------------------------------------------------
    # Pipeline helpers
    # ------------------------------------------------------------------

    def tap(self, callback: Callable[["Collection"], Any]) -> "Collection":
        callback(self._new(self))
        return self

    def pipe(self, callback: Callable[["Collection"], T]) -> T:
        return callback(self)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _serialize(value: Any) -> Any:
        if isinstance(value, Collection):
            return value.to_array()
        if hasattr(value, "to_array") and callable(value.to_array):
            return value.to_array()
        if hasattr(value, "to_dict") and callable(value.to_dict):
            return value.to_dict()
        return value

    def to_array(self) -> list | dict:
        serialized = {k: self._serialize(v) for k, v in self.items.items()}
        if _is_sequential(serialized):
            return list(serialized.values())
        return serialized

    def json_serialize(self) -> list | dict:
        return self.to_array()

    def to_json(self, **kwargs: Any) -> str:
        kwargs.setdefault("default", str)
        return json.dumps(self.json_serialize(), **kwargs)

    # ------------------------------------------------------------------
    # Python protocols
    # ------------------------------------------------------------------

    def __iter__(self):
        return iter(self.items.values())

    def __len__(self):
        return len(self.items)

    def __bool__(self):
        return bool(self.items)

    def __contains__(self, value: Any) -> bool:
        return value in self.items.values()

    def __getitem__(self, key: Any) -> Any:
        return self.items[key]

    def __setitem__(self, key: Any, value: Any):
        if key is None:
            self.push(value)
        else:
            self.items[key] = value

    def __delitem__(self, key: Any):
        del self.items[key]

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Collection):
            return self.items == other.items
        if isinstance(other, (list, dict)):
            return self.all() == other
        return NotImplemented

    __hash__ = None

    def __str__(self):
        return self.to_json()

    def __repr__(self):
        return f"{self.__class__.__name__}({self.all()!r})"


def collect(items: Any = None) -> Collection:
    return Collection(items)
