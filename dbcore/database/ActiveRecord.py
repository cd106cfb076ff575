import json
from copy import deepcopy
from datetime import date, datetime
from typing import Any, Optional, Self, Type, TypeVar

from dbcore.core_services.Connection import DotDict
from dbcore.core_services.Exceptions import MissingPrimaryKey, RecordNotFound
from dbcore.database.Collection import Collection
from dbcore.database.Events import Events
from dbcore.database.QueryBuilder import QueryBuilder

T = TypeVar("T", bound="ActiveRecord")

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# builder methods reachable straight from the class, e.g. User.where("credits", ">", 6)
FORWARDED_METHODS = {
    "select", "add_select", "select_raw", "distinct",
    "where", "or_where", "where_not", "where_raw", "or_where_raw", "where_nested",
    "where_exists", "where_not_exists",
    "join", "left_join", "right_join", "cross_join",
    "group_by", "having", "order_by", "order_by_desc", "order_by_raw", "latest", "oldest",
    "limit", "take", "offset", "skip", "for_page", "when", "unless",
    "get", "first", "first_or_fail", "value", "pluck", "chunk",
    "count", "min", "max", "sum", "avg", "doesnt_exist", "scope",
    "cache", "no_cache", "clear_cache", "get_cache_stats",
}


def as_datetime(value: Any) -> Any:
    """Best-effort conversion of stored date values to ``datetime``."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return value
    return value


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
            return True
        except ValueError:
            return False
    return False


class ActiveRecordMeta(type):
    def __init__(cls, name, bases, attrs):
        super().__init__(name, bases, attrs)

        if not attrs.get("__abstract__", False):
            cls.boot()

    def __getattr__(cls, name):
        if name.startswith("_"):
            raise AttributeError(f"type object '{cls.__name__}' has no attribute '{name}'")

        if name in FORWARDED_METHODS or name.startswith(("where_", "or_where_")):
            return getattr(cls.query(), name)

        # local scopes: scope_active -> User.active()
        if any(f"scope_{name}" in vars(klass) for klass in cls.__mro__):
            return lambda *args, **kwargs: cls.query().scope(name, *args, **kwargs)

        raise AttributeError(f"type object '{cls.__name__}' has no attribute '{name}'")


class ActiveRecord(Events, metaclass=ActiveRecordMeta):
    """
    A row of ``__table__`` as an object.

    Attributes live in a plain dict next to a snapshot of what was last
    loaded from or written to the database; the difference between the two
    is what ``save`` sends. Column values are reachable as ``record.name``,
    ``record["name"]`` or ``record.get_attribute("name")``.
    """

    __table__: str
    __abstract__: bool = True
    __primary_key__: Optional[str] = "id"
    __incrementing__: bool = True
    __timestamps__: bool = False
    __connection__: Optional[str] = None
    __fillable__: list[str] = []
    __guarded__: list[str] = ["*"]
    __hidden__: list[str] = []
    __visible__: list[str] = []
    __casts__: dict[str, str] = {}
    __dates__: list[str] = []
    __appends__: list[str] = []

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"

    exists: bool = False
    was_recently_created: bool = False

    def __init__(self, attributes: dict = None, **kwargs: Any):
        self.__class__.boot()
        self._attributes: dict[str, Any] = {}
        self._original: dict[str, Any] = {}
        self._changes: dict[str, Any] = {}
        self._connection_name: Optional[str] = self.__connection__
        self.exists = False
        self.was_recently_created = False

        self.fill(attributes, **kwargs)

    # ---------------------------------------------------------------------------
    # Class-level configuration
    # ---------------------------------------------------------------------------

    @classmethod
    def get_table(cls) -> str:
        return getattr(cls, "__table__", None) or f"{cls.__name__.lower()}s"

    @classmethod
    def get_key_name(cls) -> Optional[str]:
        return cls.__primary_key__

    def get_key(self) -> Any:
        return self._attributes.get(self.get_key_name()) if self.get_key_name() else None

    def get_casts(self) -> dict[str, str]:
        return self.__casts__

    def get_dates(self) -> list[str]:
        if self.uses_timestamps():
            return list(dict.fromkeys([*self.__dates__, self.CREATED_AT, self.UPDATED_AT]))
        return list(self.__dates__)

    def uses_timestamps(self) -> bool:
        return self.__timestamps__

    def get_connection_name(self) -> Optional[str]:
        return self._connection_name

    # ---------------------------------------------------------------------------
    # Query entry points
    # ---------------------------------------------------------------------------

    @classmethod
    def query(cls, connection_name: str = None) -> QueryBuilder:
        cls.boot()
        return QueryBuilder(
            manager=cls.get_context().manager,
            connection_name=connection_name or cls.__connection__,
        ).set_model(cls)

    def new_query(self) -> QueryBuilder:
        return self.__class__.query(self._connection_name)

    @classmethod
    def all(cls: Type[T]) -> Collection:
        return cls.query().get()

    @classmethod
    def find(cls: Type[T], id_: Any) -> Optional[T]:
        return cls.query().find(id_)

    @classmethod
    def find_many(cls: Type[T], ids) -> Collection:
        ids = list(ids)
        if not ids:
            return Collection()
        return cls.query().where_in(cls.get_key_name(), ids).get()

    @classmethod
    def find_or_fail(cls: Type[T], id_: Any) -> T:
        record = cls.find(id_)
        if record is None:
            raise RecordNotFound(cls.__name__, [id_])
        return record

    @classmethod
    def create(cls: Type[T], attributes: dict = None, **kwargs: Any) -> T:
        instance = cls(attributes, **kwargs)
        instance.save()
        return instance

    @classmethod
    def first_or_create(cls: Type[T], attributes: dict, values: dict = None) -> T:
        record = cls.query().where(attributes).first()
        if record is not None:
            return record
        return cls.create({**attributes, **(values or {})})

    @classmethod
    def update_or_create(cls: Type[T], attributes: dict, values: dict = None) -> T:
        record = cls.query().where(attributes).first() or cls(attributes)
        record.fill(values or {})
        record.save()
        return record

    @classmethod
    def destroy(cls, *ids: Any) -> int:
        """Delete the records with the given keys one by one, firing events. Returns the count."""
        if len(ids) == 1 and isinstance(ids[0], (list, tuple, set, Collection)):
            ids = tuple(ids[0])

        count = 0
        for record in cls.find_many(ids):
            if record.delete():
                count += 1
        return count

    @classmethod
    def hydrate(cls: Type[T], rows, connection_name: str = None) -> Collection:
        return Collection([cls.new_from_builder(row, connection_name) for row in rows])

    @classmethod
    def new_from_builder(cls: Type[T], row: dict, connection_name: str = None) -> T:
        instance = cls()
        instance.set_raw_attributes(dict(row), sync=True)
        instance.exists = True
        if connection_name:
            instance._connection_name = connection_name
        instance.fire_event("retrieved")
        return instance

    # ---------------------------------------------------------------------------
    # Attributes
    # ---------------------------------------------------------------------------

    def get_attribute(self, key: str) -> Any:
        return self._attributes.get(key)

    def set_attribute(self, key: str, value: Any) -> Self:
        self._attributes[key] = value
        return self

    def get_attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def set_raw_attributes(self, attributes: dict, sync: bool = False) -> Self:
        self._attributes = dict(attributes)
        if sync:
            self.sync_original()
        return self

    def fill(self, attributes: dict = None, **kwargs: Any) -> Self:
        """Assign the mass-assignable subset of the given attributes."""
        for key, value in {**(attributes or {}), **kwargs}.items():
            if self.is_fillable(key):
                self.set_attribute(key, value)
        return self

    def force_fill(self, attributes: dict = None, **kwargs: Any) -> Self:
        for key, value in {**(attributes or {}), **kwargs}.items():
            self.set_attribute(key, value)
        return self

    def is_fillable(self, key: str) -> bool:
        if key in self.__fillable__:
            return True
        if self.__fillable__:
            return False
        return not self.is_guarded(key)

    def is_guarded(self, key: str) -> bool:
        return "*" in self.__guarded__ or key in self.__guarded__

    # ---------------------------------------------------------------------------
    # Casting and comparison
    # ---------------------------------------------------------------------------

    def cast_attribute(self, key: str, value: Any) -> Any:
        if value is None:
            return None

        cast = self.get_casts().get(key)
        if cast is None:
            return value

        cast = cast.lower()
        if cast in ("int", "integer"):
            return int(value)
        if cast in ("float", "double", "real"):
            return float(value)
        if cast in ("str", "string"):
            return str(value)
        if cast in ("bool", "boolean"):
            if isinstance(value, str):
                return value.strip().lower() not in ("", "0", "false")
            return bool(value)
        if cast in ("array", "json"):
            return json.loads(value) if isinstance(value, (str, bytes)) else value
        if cast == "object":
            return json.loads(value, object_hook=DotDict) if isinstance(value, (str, bytes)) else value
        if cast in ("date", "datetime"):
            return as_datetime(value)
        return value

    def from_date_time(self, value: Any) -> Any:
        converted = as_datetime(value)
        if isinstance(converted, datetime):
            return converted.strftime(DATE_FORMAT)
        return value

    def original_is_equivalent(self, key: str) -> bool:
        if key not in self._original:
            return False

        current = self._attributes.get(key)
        original = self._original.get(key)

        if type(current) is type(original) and current == original:
            return True
        if current is None:
            return False
        if key in self.get_dates():
            return self.from_date_time(current) == self.from_date_time(original)
        if key in self.get_casts():
            return self.cast_attribute(key, current) == self.cast_attribute(key, original)

        return is_numeric(current) and is_numeric(original) and str(current) == str(original)

    # ---------------------------------------------------------------------------
    # Dirty tracking
    # ---------------------------------------------------------------------------

    def get_original(self, key: str = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._original)
        return self._original.get(key, default)

    def get_dirty(self) -> dict[str, Any]:
        return {key: value for key, value in self._attributes.items() if not self.original_is_equivalent(key)}

    @staticmethod
    def _has_changes(changes: dict, keys) -> bool:
        keys = [k for key in keys for k in (key if isinstance(key, (list, tuple)) else [key])]
        if not keys:
            return len(changes) > 0
        return any(key in changes for key in keys)

    def is_dirty(self, *keys: str) -> bool:
        return self._has_changes(self.get_dirty(), keys)

    def is_clean(self, *keys: str) -> bool:
        return not self.is_dirty(*keys)

    def was_changed(self, *keys: str) -> bool:
        return self._has_changes(self._changes, keys)

    def get_changes(self) -> dict[str, Any]:
        return dict(self._changes)

    def sync_original(self) -> Self:
        self._original = deepcopy(self._attributes)
        return self

    def sync_changes(self) -> Self:
        self._changes = self.get_dirty()
        return self

    # ---------------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------------

    def fresh_timestamp(self) -> str:
        return datetime.now().strftime(DATE_FORMAT)

    def update_timestamps(self):
        now = self.fresh_timestamp()
        if self.UPDATED_AT and not self.is_dirty(self.UPDATED_AT):
            self.set_attribute(self.UPDATED_AT, now)
        if not self.exists and self.CREATED_AT and not self.is_dirty(self.CREATED_AT):
            self.set_attribute(self.CREATED_AT, now)

    def _key_for_save_query(self) -> Any:
        key_name = self.get_key_name()
        return self._original.get(key_name, self.get_key())

    def _set_keys_for_save_query(self, query: QueryBuilder) -> QueryBuilder:
        return query.where(self.get_key_name(), "=", self._key_for_save_query())

    def save(self) -> bool:
        """
        Insert or update the record.

        Fires ``saving``, then ``creating``/``updating`` before the write and
        ``created``/``updated``, then ``saved`` after it. Returns False when a
        listener cancels; a persisted record with no changes is a no-op.
        """
        if self.fire_event("saving") is False:
            return False

        if self.exists:
            saved = self._perform_update() if self.is_dirty() else True
        else:
            saved = self._perform_insert()

        if saved:
            self.fire_event("saved")
            self.sync_original()
        return saved

    def _perform_insert(self) -> bool:
        if self.fire_event("creating") is False:
            return False

        if self.uses_timestamps():
            self.update_timestamps()

        attributes = self.get_attributes()
        query = self.new_query()

        if self.__incrementing__ and self.get_key_name():
            new_id = query.insert_get_id(attributes)
            if self.get_key() is None:
                self.set_attribute(self.get_key_name(), new_id)
        else:
            query.insert(attributes)

        self.exists = True
        self.was_recently_created = True
        self.fire_event("created")
        return True

    def _perform_update(self) -> bool:
        if self.fire_event("updating") is False:
            return False

        if self.uses_timestamps():
            self.update_timestamps()

        dirty = self.get_dirty()
        if dirty:
            if not self.get_key_name():
                raise MissingPrimaryKey(self.__class__.__name__)
            self._set_keys_for_save_query(self.new_query()).update(dirty)
            self.sync_changes()
            self.fire_event("updated")
        return True

    def delete(self) -> Optional[bool]:
        if not self.get_key_name():
            raise MissingPrimaryKey(self.__class__.__name__)

        if not self.exists:
            return None

        if self.fire_event("deleting") is False:
            return False

        self._set_keys_for_save_query(self.new_query()).delete()
        self.exists = False
        self.fire_event("deleted")
        return True

    def refresh(self) -> Self:
        """Reload attributes from the database in place."""
        if not self.exists:
            return self

        row = self.new_query().where(
            self.get_key_name(), "=", self.get_key()
        ).first()
        if row is None:
            raise RecordNotFound(self.__class__.__name__, [self.get_key()])

        self.set_raw_attributes(row.get_attributes(), sync=True)
        return self

    def fresh(self) -> Optional[Self]:
        if not self.exists:
            return None
        return self.new_query().find(self.get_key())

    def replicate(self, except_: list[str] = None) -> Self:
        excluded = {self.get_key_name(), *(except_ or [])}
        if self.uses_timestamps():
            excluded.update({self.CREATED_AT, self.UPDATED_AT})

        instance = self.__class__()
        instance.set_raw_attributes({k: v for k, v in self._attributes.items() if k not in excluded})
        return instance

    # ---------------------------------------------------------------------------
    # Serialization
    # ---------------------------------------------------------------------------

    def serialize_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.strftime(DATE_FORMAT)
        if isinstance(value, date):
            return value.isoformat()
        if hasattr(value, "to_array"):
            return value.to_array()
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return value

    def is_arrayable(self, key: str) -> bool:
        if self.__visible__ and key not in self.__visible__:
            return False
        return key not in self.__hidden__

    def to_dict(self) -> DotDict:
        return DotDict({
            key: self.serialize_value(self.get_attribute(key))
            for key in self._attributes
            if self.is_arrayable(key)
        })

    def to_array(self) -> DotDict:
        return self.to_dict()

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)

    # ---------------------------------------------------------------------------
    # Dunder access
    # ---------------------------------------------------------------------------

    @classmethod
    def _class_defines(cls, key: str) -> bool:
        return any(key in vars(klass) for klass in cls.__mro__)

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        try:
            attributes = object.__getattribute__(self, "_attributes")
        except AttributeError:
            raise AttributeError(key) from None
        if key in attributes or self._has_accessor(key):
            return self.get_attribute(key)
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{key}'")

    def _has_accessor(self, key: str) -> bool:
        return False

    def __setattr__(self, key: str, value: Any):
        if key.startswith("_") or self._class_defines(key):
            object.__setattr__(self, key, value)
        else:
            self.set_attribute(key, value)

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any):
        self.set_attribute(key, value)

    def __delitem__(self, key: str):
        self._attributes.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._attributes

    def __str__(self):
        return self.to_json()

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.get_key_name()}={self.get_key()!r} exists={self.exists}>"
