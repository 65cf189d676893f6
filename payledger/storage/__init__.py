"""
Storage backends: durable key-value state with all-or-nothing commit per call.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Iterator, Optional, Tuple


class StorageBackend(ABC):
    """
    Abstract key-value store partitioned into namespaces.

    Values are JSON-compatible dicts. Writes made inside ``transaction()``
    become visible together when the block exits normally, and are all
    discarded when it raises.

    ``transaction()`` is exclusive: a backend holds its own lock for the
    whole block, so a second thread (or a second ledger handle over the
    same backend) waits rather than joining it. Re-entry from the owning
    thread nests into the outer block. Reads from other threads never see
    staged writes.
    """

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def put(self, namespace: str, key: str, value: dict) -> None:
        pass

    @abstractmethod
    def contains(self, namespace: str, key: str) -> bool:
        pass

    @abstractmethod
    def iter_items(self, namespace: str) -> Iterator[Tuple[str, dict]]:
        pass

    @abstractmethod
    def count(self, namespace: str) -> int:
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("memory://"):
        return MemoryStorage()

    if uri.startswith("sqlite://"):
        # Extract everything after sqlite://
        raw_path = uri[len("sqlite://"):]
        if not raw_path:
            raise ValueError("sqlite:// URI needs a path")
        return SQLiteStorage(Path(raw_path).resolve())

    raise ValueError(f"Unsupported storage URI: {uri}")


from .memory import MemoryStorage
from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "MemoryStorage", "SQLiteStorage"]
