import inspect
import json
from datetime import date, datetime
from typing import Any, Self

from dbcore.core_services.Connection import DotDict
from dbcore.database.ActiveRecord import ActiveRecord, as_datetime
from dbcore.database.Collection import Collection


def _takes_value(method) -> bool:
    try:
        parameters = inspect.signature(method).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in parameters
    )


class EnhancedActiveRecord(ActiveRecord):
    """
    ActiveRecord with read-time casting, accessors and mutators, appended
    attributes, a relation cache and automatic timestamps.

    Accessors are ``get_<name>_attribute(self, value)`` methods (``value`` may
    be left off for purely computed attributes); mutators are
    ``set_<name>_attribute(self, value)`` and return the value to store.
    Both are discovered once per class and cached in the model registry.
    """

    __abstract__ = True
    __timestamps__ = True

    def __init__(self, attributes: dict = None, **kwargs: Any):
        self._relations: dict[str, Any] = {}
        super().__init__(attributes, **kwargs)

    @classmethod
    def get_mutators(cls) -> dict[str, dict[str, str]]:
        return cls.get_registry().mutators_for(cls)

    def has_get_mutator(self, key: str) -> bool:
        return key in self.get_mutators()["get"]

    def has_set_mutator(self, key: str) -> bool:
        return key in self.get_mutators()["set"]

    def _has_accessor(self, key: str) -> bool:
        return self.has_get_mutator(key) or key in self._relations

    # ---------------------------------------------------------------------------
    # Attributes
    # ---------------------------------------------------------------------------

    def get_attribute(self, key: str) -> Any:
        if not key:
            return None

        if key in self._attributes or self.has_get_mutator(key):
            return self.get_attribute_value(key)

        if key in self._relations:
            return self._relations[key]

        return None

    def get_attribute_value(self, key: str) -> Any:
        value = self._attributes.get(key)

        if self.has_get_mutator(key):
            method = getattr(self, self.get_mutators()["get"][key])
            return method(value) if _takes_value(method) else method()

        if key in self.get_casts():
            return self.cast_attribute(key, value)

        if key in self.get_dates() and value is not None:
            return as_datetime(value)

        return value

    def set_attribute(self, key: str, value: Any) -> Self:
        if self.has_set_mutator(key):
            value = getattr(self, self.get_mutators()["set"][key])(value)
        elif key in self.get_dates() and isinstance(value, (datetime, date)):
            value = self.from_date_time(value)
        elif self.get_casts().get(key) in ("array", "json", "object") and isinstance(value, (dict, list)):
            value = json.dumps(value)

        self._attributes[key] = value
        return self

    # ---------------------------------------------------------------------------
    # Relations
    # ---------------------------------------------------------------------------

    def set_relation(self, name: str, value: Any) -> Self:
        self._relations[name] = value
        return self

    def get_relation(self, name: str) -> Any:
        return self._relations.get(name)

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def unset_relation(self, name: str) -> Self:
        self._relations.pop(name, None)
        return self

    def get_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def set_relations(self, relations: dict) -> Self:
        self._relations = dict(relations)
        return self

    # ---------------------------------------------------------------------------
    # Timestamps
    # ---------------------------------------------------------------------------

    def touch(self, attribute: str = None) -> bool:
        """Bump ``updated_at`` (or ``attribute``) and save."""
        if attribute:
            self.set_attribute(attribute, self.fresh_timestamp())
            return self.save()

        if not self.uses_timestamps():
            return False

        self.update_timestamps()
        return self.save()

    # ---------------------------------------------------------------------------
    # Serialization
    # ---------------------------------------------------------------------------

    def get_appends(self) -> list[str]:
        return self.__appends__

    def attributes_to_dict(self) -> dict[str, Any]:
        data = {}
        for key in self._attributes:
            if self.is_arrayable(key):
                data[key] = self.serialize_value(self.get_attribute_value(key))

        for key in self.get_appends():
            if self.is_arrayable(key):
                data[key] = self.serialize_value(self.get_attribute_value(key))
        return data

    def relations_to_dict(self) -> dict[str, Any]:
        data = {}
        for name, related in self._relations.items():
            if not self.is_arrayable(name):
                continue
            if related is None:
                data[name] = None
            elif isinstance(related, (list, tuple)):
                data[name] = [self.serialize_value(item) for item in related]
            elif isinstance(related, (ActiveRecord, Collection)):
                data[name] = related.to_array()
            else:
                data[name] = related
        return data

    def to_dict(self) -> DotDict:
        return DotDict({**self.attributes_to_dict(), **self.relations_to_dict()})

    def make_visible(self, *keys: str) -> Self:
        object.__setattr__(self, "__hidden__", [k for k in self.__hidden__ if k not in keys])
        if self.__visible__:
            object.__setattr__(self, "__visible__", [*self.__visible__, *keys])
        return self

    def make_hidden(self, *keys: str) -> Self:
        object.__setattr__(self, "__hidden__", [*self.__hidden__, *keys])
        return self

    def __repr__(self):
        return f"<{self.__class__.__name__} {dict(self._attributes)!r}>"
