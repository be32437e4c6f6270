"""Sources of reconcile requests for a controller.

A `Watch` turns store events of one kind into the keys that should be
reconciled. `for_kind` requests the object itself, `owned_by` requests the
controller owner of the object.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging

from kyma_inventory.manifest import NamedResource, controller_of
from kyma_inventory.store import StoreEvent, WatchEvent

__all__ = ["Watch", "Predicate", "for_kind", "owned_by", "generation_changed"]

_LOGGER = logging.getLogger(__name__)

Predicate = Callable[[WatchEvent], bool]
Mapper = Callable[[WatchEvent], list[NamedResource]]


def generation_changed(event: WatchEvent) -> bool:
    """Drop updates that did not change the object generation.

    The generation only changes with the spec, so status updates written by a
    reconciler do not trigger that reconciler again.
    """
    if event.type != StoreEvent.MODIFIED or event.old is None:
        return True
    return event.obj.metadata.generation != event.old.metadata.generation


@dataclass
class Watch:
    """Maps store events of a kind to the keys to reconcile."""

    kind: str
    """The kind of objects to watch."""

    mapper: Mapper
    """Returns the keys to enqueue for an event."""

    predicates: list[Predicate] = field(default_factory=list)
    """All predicates must accept an event for it to be mapped."""

    def requests(self, event: WatchEvent) -> list[NamedResource]:
        """Return the keys to reconcile for the event."""
        if event.obj.kind != self.kind:
            return []
        for predicate in self.predicates:
            if not predicate(event):
                _LOGGER.debug(
                    "Event %s for %s filtered by %s",
                    event.type,
                    event.resource_id,
                    getattr(predicate, "__name__", predicate),
                )
                return []
        return self.mapper(event)


def for_kind(kind: str, *predicates: Predicate) -> Watch:
    """Watch objects of a kind and reconcile the objects themselves."""
    return Watch(
        kind=kind,
        mapper=lambda event: [event.resource_id],
        predicates=list(predicates),
    )


def owned_by(kind: str, owner_kind: str, owner_api_version: str) -> Watch:
    """Watch objects of a kind and reconcile their controller owner."""

    def mapper(event: WatchEvent) -> list[NamedResource]:
        owner = controller_of(event.obj)
        if (
            owner is None
            or owner.kind != owner_kind
            or owner.api_version != owner_api_version
        ):
            return []
        return [NamedResource(owner_kind, event.obj.namespace, owner.name)]

    return Watch(kind=kind, mapper=mapper)
