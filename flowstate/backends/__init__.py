"""Interrupt persistence backends."""

from flowstate.backends.base import PersistenceBackend
from flowstate.backends.file import FilePersistence
from flowstate.backends.memory import MemoryPersistence
from flowstate.backends.sqlite import SQLitePersistence

__all__ = [
    "PersistenceBackend",
    "MemoryPersistence",
    "FilePersistence",
    "SQLitePersistence",
]
