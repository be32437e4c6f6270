"""
The store module provides the central repository of inventory resources.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Arbitrates concurrent writes with resource versions (optimistic concurrency).
- Provides watches and secondary field indexes for controllers.

This abstract interface allows for various implementations (in-memory, a real
cluster API, etc.).
"""

from .store import FieldIndex, Store, StoreEvent, WatchEvent
from .in_memory import InMemoryStore

__all__ = [
    "FieldIndex",
    "Store",
    "StoreEvent",
    "WatchEvent",
    "InMemoryStore",
]
