"""Lock-guarded mapping shared by the poll loop and notification tasks."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, Hashable, List, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SharedTable(Generic[K, V]):
    """A dict whose every operation holds one lock.

    Last write wins; callers needing read-modify-write use ``update``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[K, V] = {}

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._data.pop(key, default)

    def update(self, key: K, func: Callable[[Optional[V]], V]) -> V:
        with self._lock:
            value = func(self._data.get(key))
            self._data[key] = value
            return value

    def remove_where(self, predicate: Callable[[K], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._data if predicate(key)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
