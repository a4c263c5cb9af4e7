"""Minimal observable values for publishing state across threads."""

import logging
import threading
from typing import Any, Callable, Generic, List, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """Thread-safe holder of a current value.

    Subscribers are called synchronously on the publishing thread with the
    new value. Readers only ever see the latest value.
    """

    def __init__(self, value: T):
        self._value = value
        self._lock = threading.RLock()
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T):
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        self._notify(subscribers, value)

    def update(self, func: Callable[[T], T]) -> T:
        """Atomically replace the value with ``func(current)``."""
        with self._lock:
            value = func(self._value)
            self._value = value
            subscribers = list(self._subscribers)
        self._notify(subscribers, value)
        return value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @staticmethod
    def _notify(subscribers, value):
        for callback in subscribers:
            try:
                callback(value)
            except Exception as e:
                logger.warning(f"Subscriber {callback!r} failed: {e}")


class Combined(Observable[T]):
    """A value derived from several observables.

    Recomputed whenever any source changes. At most one recompute runs at a
    time; changes arriving during a recompute trigger exactly one more pass.
    """

    def __init__(self, sources: Sequence[Observable], func: Callable[..., T]):
        self._sources = list(sources)
        self._func = func
        self._state_lock = threading.Lock()
        self._dirty = False
        self._computing = False
        super().__init__(func(*[s.value for s in self._sources]))
        self._unsubscribers = [s.subscribe(self._on_source_changed) for s in self._sources]

    def _on_source_changed(self, _value: Any):
        with self._state_lock:
            self._dirty = True
            if self._computing:
                return
            self._computing = True

        try:
            while True:
                with self._state_lock:
                    if not self._dirty:
                        self._computing = False
                        return
                    self._dirty = False
                self.set(self._func(*[s.value for s in self._sources]))
        except Exception:
            with self._state_lock:
                self._computing = False
            raise

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []


def combine(sources: Sequence[Observable], func: Callable[..., T]) -> Combined:
    """Derive an observable from ``sources`` using ``func(*values)``."""
    return Combined(sources, func)
