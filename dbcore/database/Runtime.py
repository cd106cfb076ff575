"""
Runtime context for models.

Everything a model class needs at run time (the database manager, whether
it has been booted, its event listeners, its discovered mutators) lives in
an ``OrmContext``, along with the query result cache. Tests can build their
own context with a fresh ``ModelRegistry`` and nothing leaks between them.
"""
import hashlib
import json
import re
import time
from typing import Callable, Optional

from dbcore.core_services.DatabaseManager import DatabaseManager


class ModelRegistry:
    def __init__(self):
        self.booted: set[type] = set()
        self.listeners: dict[type, dict[str, list[tuple[int, Callable]]]] = {}
        self.mutators: dict[type, dict[str, dict[str, str]]] = {}
        self.muted: set[type] = set()

    def is_booted(self, model: type) -> bool:
        return model in self.booted

    def mark_booted(self, model: type):
        self.booted.add(model)

    def listen(self, model: type, event: str, callback: Callable, priority: int = 0):
        """Register ``callback`` for ``event``; higher priority runs first."""
        registered = self.listeners.setdefault(model, {}).setdefault(event, [])
        if (priority, callback) not in registered:
            registered.append((priority, callback))
            registered.sort(key=lambda pair: pair[0], reverse=True)

    def listeners_for(self, model: type, event: str) -> list[Callable]:
        events = self.listeners.get(model, {})
        return [callback for _, callback in events.get(event, []) + events.get("__all__", [])]

    def forget_listeners(self, model: type):
        self.listeners.pop(model, None)

    def mutators_for(self, model: type) -> dict[str, dict[str, str]]:
        """
        ``{"get": {attr: method_name}, "set": {attr: method_name}}`` for the
        ``get_<attr>_attribute`` / ``set_<attr>_attribute`` methods on
        ``model``, discovered once and cached.
        """
        if model not in self.mutators:
            found = {"get": {}, "set": {}}
            for name in dir(model):
                match = re.fullmatch(r"(get|set)_(\w+)_attribute", name)
                if match and callable(getattr(model, name, None)):
                    found[match.group(1)][match.group(2)] = name
            self.mutators[model] = found
        return self.mutators[model]

    def flush(self):
        self.booted.clear()
        self.listeners.clear()
        self.mutators.clear()
        self.muted.clear()


class QueryCache:
    """
    Result rows of ``SELECT`` statements keyed by connection, SQL and
    bindings, each kept until its TTL runs out. Writes through a builder
    forget the entries of the table they touched.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.entries: dict[str, tuple[float, str, list]] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(connection_name: Optional[str], sql: str, bindings: list) -> str:
        payload = json.dumps([connection_name, sql, bindings], default=str)
        return hashlib.md5(payload.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[list]:
        entry = self.entries.get(key)
        if entry is not None and entry[0] <= self.clock():
            del self.entries[key]
            entry = None

        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return [type(row)(row) for row in entry[2]]

    def put(self, key: str, rows: list, ttl: float, table: str = None):
        self.entries[key] = (self.clock() + ttl, table, [type(row)(row) for row in rows])

    def forget_table(self, table: str):
        for key in [key for key, entry in self.entries.items() if entry[1] == table]:
            del self.entries[key]

    def clear(self):
        self.entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict[str, int]:
        return {"entries": len(self.entries), "hits": self.hits, "misses": self.misses}


class OrmContext:
    def __init__(self, manager: Optional[DatabaseManager] = None, registry: Optional[ModelRegistry] = None,
                 query_cache: Optional[QueryCache] = None):
        self._manager = manager
        self.registry = registry or ModelRegistry()
        self.query_cache = query_cache or QueryCache()

    @property
    def manager(self) -> DatabaseManager:
        if self._manager is None:
            self._manager = DatabaseManager.from_env()
        return self._manager

    @manager.setter
    def manager(self, manager: DatabaseManager):
        self._manager = manager

    def __repr__(self):
        return f"<OrmContext manager={self._manager!r} booted={len(self.registry.booted)}>"


_default_context: Optional[OrmContext] = None


def get_default_context() -> OrmContext:
    global _default_context
    if _default_context is None:
        _default_context = OrmContext()
    return _default_context


def set_default_context(context: Optional[OrmContext]) -> Optional[OrmContext]:
    """Install ``context`` as the default and return the previous one."""
    global _default_context
    previous = _default_context
    _default_context = context
    return previous


def use_manager(manager: DatabaseManager, registry: ModelRegistry = None) -> OrmContext:
    context = OrmContext(manager, registry)
    set_default_context(context)
    return context
