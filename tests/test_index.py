"""Tests for the owner index."""

import pytest

from kyma_inventory.config import IndexConfig
from kyma_inventory.index import OwnerIndex
from kyma_inventory.manifest import (
    API_VERSION,
    HelmComponent,
    HelmComponentSpec,
    NamedResource,
    ObjectMeta,
    OwnerReference,
)
from kyma_inventory.store import InMemoryStore, StoreEvent, WatchEvent


def _component(
    name: str,
    owner: str | None,
    namespace: str = "ns",
    kind: str = "Kyma",
    api_version: str = API_VERSION,
    controller: bool = True,
) -> HelmComponent:
    refs = []
    if owner:
        refs.append(
            OwnerReference(
                api_version=api_version,
                kind=kind,
                name=owner,
                uid="uid",
                controller=controller,
            )
        )
    return HelmComponent(
        metadata=ObjectMeta(name=name, namespace=namespace, owner_references=refs),
        spec=HelmComponentSpec(component_name=name),
    )


def _rid(name: str, namespace: str = "ns") -> NamedResource:
    return NamedResource("HelmComponent", namespace, name)


@pytest.fixture(name="index")
def index_fixture() -> OwnerIndex:
    return OwnerIndex(IndexConfig())


def test_extract_owner(index: OwnerIndex) -> None:
    """Test that only the controller owner of the configured kind is indexed."""
    assert index.extract_owner(_component("p-a", "p")) == "p"
    assert index.extract_owner(_component("p-a", None)) is None
    assert index.extract_owner(_component("p-a", "p", kind="Other")) is None
    assert (
        index.extract_owner(_component("p-a", "p", api_version="other/v1")) is None
    )
    assert index.extract_owner(_component("p-a", "p", controller=False)) is None


def test_on_event(index: OwnerIndex) -> None:
    """Test that the index follows added, modified and deleted events."""
    index.on_event(WatchEvent(StoreEvent.ADDED, _component("p-a", "p")))
    index.on_event(WatchEvent(StoreEvent.ADDED, _component("p-b", "p")))
    index.on_event(WatchEvent(StoreEvent.ADDED, _component("q-a", "q")))
    index.on_event(WatchEvent(StoreEvent.ADDED, _component("p-a", "p", "other")))
    assert index.lookup("ns", "p") == [_rid("p-a"), _rid("p-b")]
    assert index.lookup("ns", "q") == [_rid("q-a")]
    assert index.lookup("other", "p") == [_rid("p-a", "other")]
    assert index.lookup(None, "p") == [_rid("p-a"), _rid("p-b"), _rid("p-a", "other")]

    # An object losing its owner is removed from the index
    index.on_event(WatchEvent(StoreEvent.MODIFIED, _component("p-b", None)))
    assert index.lookup("ns", "p") == [_rid("p-a")]

    index.on_event(WatchEvent(StoreEvent.DELETED, _component("p-a", "p")))
    assert index.lookup("ns", "p") == []
    assert index.lookup("ns", "missing") == []


def test_rebuild(index: OwnerIndex) -> None:
    """Test that rebuilding replaces the index contents."""
    index.on_event(WatchEvent(StoreEvent.ADDED, _component("p-a", "p")))
    index.rebuild([_component("q-a", "q")])
    assert index.lookup("ns", "p") == []
    assert index.lookup("ns", "q") == [_rid("q-a")]


async def test_store_list_matching_fields(index: OwnerIndex) -> None:
    """Test listing the children of an owner through the store."""
    store = InMemoryStore()
    await store.create(_component("p-a", "p"))
    store.add_indexer(HelmComponent, index.field, index)
    await store.create(_component("p-b", "p"))
    await store.create(_component("q-a", "q"))

    children = await store.list(
        HelmComponent, namespace="ns", matching_fields={index.field: "p"}
    )
    assert [c.name for c in children] == ["p-a", "p-b"]

    await store.delete(_rid("p-a"))
    children = await store.list(
        HelmComponent, namespace="ns", matching_fields={index.field: "p"}
    )
    assert [c.name for c in children] == ["p-b"]
