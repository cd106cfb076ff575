from contextlib import contextmanager
from typing import Callable

from dbcore.database.Runtime import OrmContext, get_default_context

# a False result from a hook or listener on these cancels the operation
HALTING_EVENTS = ("saving", "creating", "updating", "deleting")


def on(event_name: str, priority: int = 0):
    """
    Mark a record method as a listener for ``event_name`` ("__all__" for
    every event). ``Events.boot`` registers it in the class's registry.
    """
    def mark(method: Callable) -> Callable:
        method.__event_name__ = event_name
        method.__event_priority__ = priority
        return method
    return mark


class Events:
    __context__: OrmContext = None
    __dispatches_events__: bool = True

    @classmethod
    def get_context(cls) -> OrmContext:
        return cls.__context__ or get_default_context()

    @classmethod
    def get_registry(cls):
        return cls.get_context().registry

    @classmethod
    def boot(cls):
        registry = cls.get_registry()
        if registry.is_booted(cls):
            return
        registry.mark_booted(cls)

        # @on(...) methods, including inherited ones
        for attr_name in dir(cls):
            attr_value = getattr(cls, attr_name, None)
            if hasattr(attr_value, "__event_name__"):
                registry.listen(cls, attr_value.__event_name__, attr_value,
                                getattr(attr_value, "__event_priority__", 0))

        if hasattr(cls, "booted") and callable(cls.booted):
            cls.booted()

    @classmethod
    def on(cls, event_name: str, callback: Callable, priority: int = 0):
        """
        Register a class-level event listener for a specific event.

        Args:
            event_name (str): Name of the event (e.g., "created", "retrieved"),
                or "__all__" to receive every event.
            callback (callable): Called with the record when the event fires.
            priority (int, optional): Determines execution order. Higher runs first.
        """
        cls.get_registry().listen(cls, event_name, callback, priority)

    @classmethod
    def flush_event_listeners(cls):
        cls.get_registry().forget_listeners(cls)

    @classmethod
    def dispatches_events(cls) -> bool:
        return cls.__dispatches_events__ and cls not in cls.get_registry().muted

    @classmethod
    @contextmanager
    def without_events(cls):
        """Run the block with this model's events silenced."""
        registry = cls.get_registry()
        already_muted = cls in registry.muted
        registry.muted.add(cls)
        try:
            yield cls
        finally:
            if not already_muted:
                registry.muted.discard(cls)

    def fire_event(self, event_name: str, halt: bool = None) -> bool:
        """
        Fire a lifecycle event: the record's own hook method first, then the
        class-level listeners. Returns False when a halting event is cancelled.
        """
        if not self.dispatches_events():
            return True

        if halt is None:
            halt = event_name in HALTING_EVENTS

        method = getattr(self, event_name, None)
        if callable(method):
            if method() is False and halt:
                return False

        for callback in self.get_registry().listeners_for(self.__class__, event_name):
            if callback(self) is False and halt:
                return False

        return True

    # ----------------------------------------------------------------------
    # Lifecycle Events
    # ----------------------------------------------------------------------

    def retrieved(self):
        """
        Event triggered after a record is hydrated from a database row.
        """
        pass

    def creating(self):
        """
        Event triggered before a record is inserted. Return False to cancel.
        """
        pass

    def created(self):
        pass

    def updating(self):
        """
        Event triggered before a dirty record is updated. Return False to cancel.
        """
        pass

    def updated(self):
        pass

    def saving(self):
        """
        Event triggered before a record is saved (either created or updated).
        Return False to cancel the save.
        """
        pass

    def saved(self):
        pass

    def deleting(self):
        """
        Event triggered before a record is deleted. Return False to cancel.
        """
        pass

    def deleted(self):
        pass
