"""Store module holding the state of the inventory resources."""

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar, TYPE_CHECKING

from kyma_inventory.manifest import NamedResource, Resource

T = TypeVar("T", bound=Resource)


class StoreEvent(str, Enum):
    """Enum for store events."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchEvent:
    """A change to an object in the store."""

    type: StoreEvent
    """The kind of change."""

    obj: Resource
    """The object after the change, or the last known state for deletions."""

    old: Resource | None = None
    """The object before the change, set for modifications."""

    @property
    def resource_id(self) -> NamedResource:
        return self.obj.resource_id


class FieldIndex(ABC):
    """A secondary index over objects of a single kind.

    The store keeps registered indexes current by calling `on_event` for every
    change to an object of the indexed kind, before listeners are notified.
    """

    @abstractmethod
    def on_event(self, event: WatchEvent) -> None:
        """Update the index for a change to an object."""

    @abstractmethod
    def rebuild(self, objs: Iterable[Resource]) -> None:
        """Discard the index contents and rebuild it from the objects."""

    @abstractmethod
    def lookup(self, namespace: str | None, value: str) -> list[NamedResource]:
        """Return the keys of all objects whose indexed value matches."""


class Store(ABC):
    """Abstract base class for the central object store with listener support.

    All objects returned are copies and may be modified freely by the caller.
    Writes are checked against `metadata.resource_version` so that concurrent
    writers can't silently overwrite each other.
    """

    @abstractmethod
    async def get(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by resource identity and type.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def list(
        self,
        cls: type[T],
        namespace: str | None = None,
        matching_fields: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a type, optionally filtered by namespace and indexed fields."""

    @abstractmethod
    async def create(self, obj: T) -> T:
        """Create a new object, returning the stored copy.

        Raises:
            AlreadyExistsError: If an object with the same identity exists.
        """

    @abstractmethod
    async def update(self, obj: T) -> T:
        """Update the metadata and spec of an object, ignoring its status.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the resource version of the object is stale.
        """

    @abstractmethod
    async def update_status(self, obj: T) -> T:
        """Update only the status of an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the resource version of the object is stale.
        """

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def add_indexer(self, cls: type[Resource], field: str, index: FieldIndex) -> None:
        """Register a secondary index used by `list` with `matching_fields`."""

    @abstractmethod
    def add_listener(
        self,
        callback: Callable[[WatchEvent], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback invoked for every change in the store.

        When flush is set, the callback is invoked with an added event for
        every existing object. Returns a callable that removes the listener.
        """

    @abstractmethod
    async def watch(self, kind: str) -> AsyncGenerator[WatchEvent]:
        """
        Watch for changes to objects of a specific kind.

        This is an asynchronous iterator that first yields an added event for
        every existing object of the kind, then yields events as they happen.

        Args:
            kind: The kind of resource to watch for (e.g., "Kyma").
        """
        if TYPE_CHECKING:
            yield None  # type: ignore[misc]
