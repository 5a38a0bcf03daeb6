"""
fleetheal Storage Module

- Atomic writes for data integrity
- Named JSON documents with per-document locks
- Pydantic validation of persisted state
"""

from .atomic import atomic_write
from .json_store import JSONStore
from .state import InMemoryStateStore, JsonStateStore, StateStore

__all__ = [
    "atomic_write",
    "JSONStore",
    "StateStore",
    "JsonStateStore",
    "InMemoryStateStore",
]
