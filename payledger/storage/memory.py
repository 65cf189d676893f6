import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from . import StorageBackend


class MemoryStorage(StorageBackend):
    """
    In-process storage. Transactions stage writes and apply them on success.

    One RLock guards every call. A transaction holds it until commit or
    rollback, so staged writes are only ever visible to the thread that
    made them.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, dict]] = {}
        self._pending: Optional[Dict[Tuple[str, str], dict]] = None
        self._lock = threading.RLock()
        self._closed = False

    def _check_open(self):
        if self._closed:
            raise RuntimeError("Storage connection is closed")

    def get(self, namespace: str, key: str) -> Optional[dict]:
        with self._lock:
            self._check_open()
            if self._pending is not None and (namespace, key) in self._pending:
                return copy.deepcopy(self._pending[(namespace, key)])
            value = self._data.get(namespace, {}).get(key)
            return copy.deepcopy(value) if value is not None else None

    def put(self, namespace: str, key: str, value: dict) -> None:
        with self._lock:
            self._check_open()
            if self._pending is not None:
                self._pending[(namespace, key)] = copy.deepcopy(value)
            else:
                self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)

    def contains(self, namespace: str, key: str) -> bool:
        return self.get(namespace, key) is not None

    def iter_items(self, namespace: str) -> Iterator[Tuple[str, dict]]:
        with self._lock:
            self._check_open()
            bucket = dict(self._data.get(namespace, {}))
            if self._pending is not None:
                for (ns, key), value in self._pending.items():
                    if ns == namespace:
                        bucket[key] = value
            items: List[Tuple[str, dict]] = [
                (key, copy.deepcopy(bucket[key])) for key in sorted(bucket)
            ]
        yield from items

    def count(self, namespace: str) -> int:
        return sum(1 for _ in self.iter_items(namespace))

    @contextmanager
    def transaction(self):
        with self._lock:
            self._check_open()
            if self._pending is not None:
                # nested in this thread: the outer block owns the commit
                yield self
                return
            self._pending = {}
            try:
                yield self
            except BaseException:
                self._pending = None
                raise
            staged, self._pending = self._pending, None
            for (namespace, key), value in staged.items():
                self._data.setdefault(namespace, {})[key] = value

    def close(self) -> None:
        with self._lock:
            self._closed = True
