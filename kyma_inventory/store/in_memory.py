"""Module for in memory object store."""

import asyncio
import copy
import itertools
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from typing import TypeVar

import logging

from kyma_inventory.manifest import NamedResource, Resource, new_uid
from kyma_inventory.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ObjectNotFoundError,
)

from .store import FieldIndex, Store, StoreEvent, WatchEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are keyed by NamedResource. Every write is assigned a new resource
    version from a store wide counter, and spec changes increment the object
    generation. Listeners and registered indexes are notified synchronously
    after each write.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Resource] = {}
        self._versions = itertools.count(1)
        self._listeners: list[Callable[[WatchEvent], None]] = []
        self._indexes: defaultdict[str, dict[str, FieldIndex]] = defaultdict(dict)

    async def _round_trip(self) -> None:
        """Yield to the event loop as a remote store would."""
        await asyncio.sleep(0)

    def _check(self, obj: Resource, cls: type[T]) -> T:
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {obj.resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    def _current(self, obj: Resource) -> Resource:
        resource_id = obj.resource_id
        if (existing := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        if obj.metadata.resource_version != existing.metadata.resource_version:
            raise ConflictError(
                str(resource_id),
                obj.metadata.resource_version,
                existing.metadata.resource_version,
            )
        return existing

    async def get(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by resource identity and type."""
        await self._round_trip()
        if (obj := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        return self._check(obj, cls)

    async def list(
        self,
        cls: type[T],
        namespace: str | None = None,
        matching_fields: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a type, optionally filtered by namespace and indexed fields."""
        await self._round_trip()
        if matching_fields:
            keys: set[NamedResource] | None = None
            for field, value in matching_fields.items():
                if (index := self._indexes[cls.kind].get(field)) is None:
                    raise ValueError(f"No index {field} registered for {cls.kind}")
                found = set(index.lookup(namespace, value))
                keys = found if keys is None else keys & found
            candidates = [self._objects[key] for key in keys or () if key in self._objects]
        else:
            candidates = [
                obj for key, obj in self._objects.items() if key.kind == cls.kind
            ]
        return [
            self._check(obj, cls)
            for obj in sorted(candidates, key=lambda o: o.resource_id)
            if namespace is None or obj.namespace == namespace
        ]

    async def create(self, obj: T) -> T:
        """Create a new object, returning the stored copy."""
        await self._round_trip()
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise AlreadyExistsError(f"Object {resource_id} already exists")
        new_obj = copy.deepcopy(obj)
        new_obj.metadata.uid = new_obj.metadata.uid or new_uid()
        new_obj.metadata.resource_version = next(self._versions)
        new_obj.metadata.generation = 1
        _LOGGER.debug("Adding object %s to store", resource_id)
        self._objects[resource_id] = new_obj
        self._fire_event(WatchEvent(StoreEvent.ADDED, copy.deepcopy(new_obj)))
        return copy.deepcopy(new_obj)

    async def update(self, obj: T) -> T:
        """Update the metadata and spec of an object, ignoring its status."""
        await self._round_trip()
        existing = self._current(obj)
        new_obj = copy.deepcopy(obj)
        new_obj.status = copy.deepcopy(existing.status)  # type: ignore[attr-defined]
        new_obj.metadata.uid = existing.metadata.uid
        new_obj.metadata.generation = existing.metadata.generation
        if new_obj.to_dict() == existing.to_dict():
            _LOGGER.debug("Object %s unchanged, skipping update", obj.resource_id)
            return copy.deepcopy(existing)  # type: ignore[return-value]
        if new_obj.spec != existing.spec:  # type: ignore[attr-defined]
            new_obj.metadata.generation += 1
        return self._replace(existing, new_obj)

    async def update_status(self, obj: T) -> T:
        """Update only the status of an object."""
        await self._round_trip()
        existing = self._current(obj)
        new_obj = copy.deepcopy(existing)
        new_obj.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        return self._replace(existing, new_obj)

    def _replace(self, existing: Resource, new_obj: T) -> T:
        new_obj.metadata.resource_version = next(self._versions)
        _LOGGER.debug(
            "Updating object %s in store (version %d)",
            new_obj.resource_id,
            new_obj.metadata.resource_version,
        )
        self._objects[new_obj.resource_id] = new_obj
        self._fire_event(
            WatchEvent(StoreEvent.MODIFIED, copy.deepcopy(new_obj), existing)
        )
        return copy.deepcopy(new_obj)

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object."""
        await self._round_trip()
        if (obj := self._objects.pop(resource_id, None)) is None:
            raise ObjectNotFoundError(f"Object {resource_id} not found")
        _LOGGER.debug("Deleted object %s from store", resource_id)
        self._fire_event(WatchEvent(StoreEvent.DELETED, obj))

    def add_indexer(self, cls: type[Resource], field: str, index: FieldIndex) -> None:
        """Register a secondary index used by `list` with `matching_fields`."""
        if field in self._indexes[cls.kind]:
            raise ValueError(f"Index {field} already registered for {cls.kind}")
        index.rebuild(
            copy.deepcopy(obj) for key, obj in self._objects.items() if key.kind == cls.kind
        )
        self._indexes[cls.kind][field] = index

    def add_listener(
        self,
        callback: Callable[[WatchEvent], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback invoked for every change in the store."""

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        self._listeners.append(callback)

        if flush:
            _LOGGER.debug("Flushing %d objects to listener", len(self._objects))
            for obj in list(self._objects.values()):
                callback(WatchEvent(StoreEvent.ADDED, copy.deepcopy(obj)))

        return remove

    def _fire_event(self, event: WatchEvent) -> None:
        for index in self._indexes[event.obj.kind].values():
            index.on_event(event)
        for cb in list(self._listeners):  # Iterate over a copy for safe removal
            try:
                cb(event)
            except Exception:
                _LOGGER.exception(
                    "Store listener callback failed for event %s %s",
                    event.type,
                    event.resource_id,
                )

    async def watch(self, kind: str) -> AsyncGenerator[WatchEvent]:
        """
        Watch for changes to objects of a specific kind.

        This is an asynchronous iterator that first yields an added event for
        every existing object of the kind, then yields events as they happen.
        """
        queue: asyncio.Queue[WatchEvent] = asyncio.Queue()

        def callback(event: WatchEvent) -> None:
            if event.obj.kind == kind:
                queue.put_nowait(event)

        # Registering with flush queues existing objects before any new change
        remove_listener = self.add_listener(callback, flush=True)

        try:
            while True:
                yield await queue.get()
        except asyncio.CancelledError:
            _LOGGER.debug("watch for kind '%s' cancelled.", kind)
            raise
        finally:
            _LOGGER.debug("Cleaning up listener for watch (kind: %s)", kind)
            remove_listener()
