"""Reverse index from HelmComponent objects to the Kyma that owns them.

The index is derived from the controller owner reference of each component and
is kept current from store events. It is only used to discover children; the
store remains the authority on whether they exist, so a stale index costs an
extra reconcile pass and never a wrong result.
"""

from collections import defaultdict
from collections.abc import Iterable
import logging

from .config import IndexConfig
from .manifest import HelmComponent, NamedResource, Resource, controller_of
from .store import FieldIndex, StoreEvent, WatchEvent

__all__ = ["OwnerIndex"]

_LOGGER = logging.getLogger(__name__)


class OwnerIndex(FieldIndex):
    """Maps each HelmComponent to the name of its owning Kyma."""

    def __init__(self, config: IndexConfig) -> None:
        """Initialize OwnerIndex."""
        self._config = config
        self._owners: dict[NamedResource, str] = {}
        self._children: defaultdict[tuple[str | None, str], set[NamedResource]] = (
            defaultdict(set)
        )

    @property
    def config(self) -> IndexConfig:
        return self._config

    @property
    def field(self) -> str:
        """Name of the indexed field used with `matching_fields`."""
        return self._config.field

    def extract_owner(self, component: HelmComponent) -> str | None:
        """Return the name of the owning Kyma, or None if there is no such relation."""
        if (owner := controller_of(component)) is None:
            return None
        if (
            owner.api_version != self._config.owner_api_version
            or owner.kind != self._config.owner_kind
        ):
            return None
        return owner.name

    def on_event(self, event: WatchEvent) -> None:
        """Update the index for a change to a HelmComponent."""
        if not isinstance(event.obj, HelmComponent):
            return
        resource_id = event.resource_id
        self._remove(resource_id)
        if event.type == StoreEvent.DELETED:
            return
        if (owner := self.extract_owner(event.obj)) is None:
            return
        self._owners[resource_id] = owner
        self._children[(resource_id.namespace, owner)].add(resource_id)

    def _remove(self, resource_id: NamedResource) -> None:
        if (owner := self._owners.pop(resource_id, None)) is None:
            return
        key = (resource_id.namespace, owner)
        self._children[key].discard(resource_id)
        if not self._children[key]:
            del self._children[key]

    def rebuild(self, objs: Iterable[Resource]) -> None:
        """Discard the index contents and rebuild it from the objects."""
        self._owners.clear()
        self._children.clear()
        for obj in objs:
            self.on_event(WatchEvent(StoreEvent.ADDED, obj))
        _LOGGER.debug("Rebuilt owner index with %d entries", len(self._owners))

    def lookup(self, namespace: str | None, value: str) -> list[NamedResource]:
        """Return the keys of all children of the named owner."""
        if namespace is None:
            found: set[NamedResource] = set()
            for (_, owner), children in self._children.items():
                if owner == value:
                    found |= children
            return sorted(found)
        return sorted(self._children.get((namespace, value), ()))
