"""Storage backends — in-memory and SQLite — behind one interface."""

from __future__ import annotations

from typing import Any

from .base import Storage
from .memory import MemoryStorage
from .sqlite import SqliteStorage

BACKENDS = {
    "memory": MemoryStorage,
    "test": MemoryStorage,
    "sqlite": SqliteStorage,
}


def get_storage(kind: str, **options: Any) -> Storage:
    """Build a storage backend by name (``memory``/``test`` or ``sqlite``)."""
    try:
        backend = BACKENDS[kind.lower()]
    except KeyError:
        raise ValueError(f"Unknown storage backend '{kind}', expected one of {sorted(BACKENDS)}") from None
    return backend(**options)


__all__ = ["BACKENDS", "MemoryStorage", "SqliteStorage", "Storage", "get_storage"]
