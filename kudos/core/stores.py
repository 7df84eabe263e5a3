"""
In-process key/value stores backing the security registries
"""
import threading
from typing import Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

V = TypeVar("V")


class InMemoryStore(Generic[V]):
    """
    Thread-safe dictionary with the get/set/delete/sweep contract used by
    the session registry and the suspicious IP map. A distributed store only
    needs to provide the same methods.
    """

    def __init__(self):
        self._data: Dict[str, V] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def sweep(self, predicate: Callable[[str, V], bool]) -> int:
        """Remove every entry matching predicate, returning the count"""
        with self._lock:
            doomed = [key for key, value in self._data.items() if predicate(key, value)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def update(self, key: str, func: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        """Atomically replace a value; returning None from func deletes it"""
        with self._lock:
            new_value = func(self._data.get(key))
            if new_value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = new_value
            return new_value

    def items(self) -> List[Tuple[str, V]]:
        with self._lock:
            return list(self._data.items())

    def values(self) -> List[V]:
        with self._lock:
            return list(self._data.values())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter([key for key, _ in self.items()])
