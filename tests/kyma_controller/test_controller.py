"""Tests for the Kyma controller."""

import logging
from unittest.mock import AsyncMock

import pytest

from kyma_inventory.component_controller import HelmComponentReconciler
from kyma_inventory.config import (
    ComponentControllerConfig,
    IndexConfig,
    KymaControllerConfig,
)
from kyma_inventory.controller import Result
from kyma_inventory.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ConstructionError,
    ObjectNotFoundError,
    StoreError,
    TransientError,
)
from kyma_inventory.index import OwnerIndex
from kyma_inventory.kyma_controller import KymaReconciler, construct_component
from kyma_inventory.manifest import (
    API_VERSION,
    ComponentSpec,
    HelmComponent,
    Kyma,
    KymaSpec,
    NamedResource,
    ObjectMeta,
)
from kyma_inventory.store import InMemoryStore, Store, StoreEvent, WatchEvent

KEY = NamedResource("Kyma", "ns", "p")


def _kyma(*components: str, uid: str = "") -> Kyma:
    return Kyma(
        metadata=ObjectMeta(name="p", namespace="ns", uid=uid),
        spec=KymaSpec(components=[ComponentSpec(name=c) for c in components]),
    )


@pytest.fixture(name="index")
def index_fixture() -> OwnerIndex:
    return OwnerIndex(IndexConfig())


@pytest.fixture(name="store")
def store_fixture(index: OwnerIndex) -> InMemoryStore:
    store = InMemoryStore()
    store.add_indexer(HelmComponent, index.field, index)
    return store


@pytest.fixture(name="reconciler")
def reconciler_fixture(store: InMemoryStore, index: OwnerIndex) -> KymaReconciler:
    return KymaReconciler(store, index, KymaControllerConfig())


async def _children(store: Store) -> dict[str, str]:
    return {
        c.name: c.status.status
        for c in await store.list(HelmComponent, namespace="ns")
    }


async def _get_kyma(store: Store) -> Kyma:
    return await store.get(KEY, Kyma)


def test_construct_component() -> None:
    """Test building the HelmComponent of a Kyma component."""
    kyma = _kyma("a", uid="uid-1")
    component = construct_component(kyma, kyma.spec.components[0])
    assert component.resource_id == NamedResource("HelmComponent", "ns", "p-a")
    assert component.spec.component_name == "a"
    assert component.status.status == ""
    [ref] = component.metadata.owner_references
    assert (ref.api_version, ref.kind, ref.name, ref.uid, ref.controller) == (
        API_VERSION,
        "Kyma",
        "p",
        "uid-1",
        True,
    )


async def test_create_components(
    store: InMemoryStore, reconciler: KymaReconciler
) -> None:
    """Test that a new Kyma gets one component per spec entry."""
    await store.create(_kyma("a", "b"))
    assert await reconciler.reconcile(KEY) == Result()

    assert await _children(store) == {"p-a": "", "p-b": ""}
    kyma = await _get_kyma(store)
    assert kyma.status.status == "reconciling"
    assert kyma.status.waiting_for == ["a", "b"]

    # Advance the components and aggregate again
    component_reconciler = HelmComponentReconciler(store, ComponentControllerConfig())
    for name in ("p-a", "p-b"):
        await component_reconciler.reconcile(NamedResource("HelmComponent", "ns", name))
    assert await reconciler.reconcile(KEY) == Result()
    assert await _children(store) == {"p-a": "pending", "p-b": "pending"}
    kyma = await _get_kyma(store)
    assert kyma.status.status == "reconciling"
    assert kyma.status.waiting_for == ["a", "b"]


async def test_idempotent(store: InMemoryStore, reconciler: KymaReconciler) -> None:
    """Test that repeated passes do not create duplicate components."""
    await store.create(_kyma("a", "b"))
    await reconciler.reconcile(KEY)
    await reconciler.reconcile(KEY)
    assert await _children(store) == {"p-a": "", "p-b": ""}
    assert (await _get_kyma(store)).status.waiting_for == ["a", "b"]


async def test_success(store: InMemoryStore, reconciler: KymaReconciler) -> None:
    """Test that a Kyma succeeds once all components succeed."""
    await store.create(_kyma("a", "b"))
    await reconciler.reconcile(KEY)
    for component in await store.list(HelmComponent):
        component.status.status = "success"
        await store.update_status(component)
    await reconciler.reconcile(KEY)
    kyma = await _get_kyma(store)
    assert kyma.status.status == "success"
    assert kyma.status.waiting_for == []

    # A converged Kyma is not rewritten
    events: list[WatchEvent] = []
    store.add_listener(events.append)
    await reconciler.reconcile(KEY)
    assert events == []


async def test_waiting_for_partial(
    store: InMemoryStore, reconciler: KymaReconciler
) -> None:
    """Test that only unfinished components are waited for, in spec order."""
    await store.create(_kyma("a", "b", "c"))
    await reconciler.reconcile(KEY)
    component = await store.get(NamedResource("HelmComponent", "ns", "p-b"), HelmComponent)
    component.status.status = "success"
    await store.update_status(component)
    await reconciler.reconcile(KEY)
    kyma = await _get_kyma(store)
    assert kyma.status.status == "reconciling"
    assert kyma.status.waiting_for == ["a", "c"]


async def test_delete_orphans(
    store: InMemoryStore, reconciler: KymaReconciler
) -> None:
    """Test that components removed from the spec are deleted."""
    await store.create(_kyma("a", "b"))
    await reconciler.reconcile(KEY)

    kyma = await _get_kyma(store)
    kyma.spec.components = [ComponentSpec(name="a"), ComponentSpec(name="c")]
    await store.update(kyma)
    await reconciler.reconcile(KEY)

    assert await _children(store) == {"p-a": "", "p-c": ""}
    assert (await _get_kyma(store)).status.waiting_for == ["a", "c"]


async def test_kyma_deleted(store: InMemoryStore, reconciler: KymaReconciler) -> None:
    """Test that the components of a deleted Kyma are deleted."""
    await store.create(_kyma("a", "b"))
    await reconciler.reconcile(KEY)
    await store.delete(KEY)

    events: list[WatchEvent] = []
    store.add_listener(events.append)
    assert await reconciler.reconcile(KEY) == Result()
    assert await _children(store) == {}
    assert [(e.type, e.obj.kind) for e in events] == [
        (StoreEvent.DELETED, "HelmComponent"),
        (StoreEvent.DELETED, "HelmComponent"),
    ]


async def test_kyma_missing(reconciler: KymaReconciler) -> None:
    """Test reconciling a Kyma that never existed."""
    assert await reconciler.reconcile(KEY) == Result()


async def test_other_owner_ignored(
    store: InMemoryStore, reconciler: KymaReconciler
) -> None:
    """Test that components of another Kyma are left alone."""
    other = await store.create(
        Kyma(
            metadata=ObjectMeta(name="q", namespace="ns"),
            spec=KymaSpec(components=[ComponentSpec(name="a")]),
        )
    )
    await store.create(construct_component(other, other.spec.components[0]))
    await store.create(_kyma("b"))
    await reconciler.reconcile(KEY)
    assert await _children(store) == {"p-b": "", "q-a": ""}


@pytest.fixture(name="mock_store")
def mock_store_fixture() -> AsyncMock:
    mock_store = AsyncMock(spec=Store)
    mock_store.list.return_value = []
    mock_store.get.return_value = _kyma("a", uid="uid-1")
    return mock_store


@pytest.fixture(name="mock_reconciler")
def mock_reconciler_fixture(mock_store: AsyncMock, index: OwnerIndex) -> KymaReconciler:
    return KymaReconciler(mock_store, index, KymaControllerConfig())


async def test_construction_error(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that a Kyma that can't own components is not retried."""
    mock_store.get.return_value = _kyma("a", uid="")
    assert await mock_reconciler.reconcile(KEY) == Result()
    mock_store.create.assert_not_called()
    mock_store.update_status.assert_not_called()


async def test_create_already_exists(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that losing a create race is not an error."""
    kyma = _kyma("a", uid="uid-1")
    mock_store.get.side_effect = [
        kyma,
        construct_component(kyma, kyma.spec.components[0]),
    ]
    mock_store.create.side_effect = AlreadyExistsError("exists")
    assert await mock_reconciler.reconcile(KEY) == Result()
    mock_store.update_status.assert_called_once()


async def test_create_failure(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that a failed create is retried after a fixed delay."""
    mock_store.create.side_effect = StoreError("unavailable")
    with pytest.raises(TransientError, match="unavailable") as exc:
        await mock_reconciler.reconcile(KEY)
    assert exc.value.requeue_after == 5.0
    mock_store.update_status.assert_not_called()


async def test_status_conflict(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that a status update conflict is ignored."""
    mock_store.update_status.side_effect = ConflictError(str(KEY), 1, 2)
    assert await mock_reconciler.reconcile(KEY) == Result()


async def test_orphan_delete_failure(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that a failed orphan delete fails the pass."""
    kyma = _kyma(uid="uid-1")
    mock_store.get.return_value = kyma
    mock_store.list.return_value = [
        construct_component(_kyma("b", uid="uid-1"), ComponentSpec(name="b"))
    ]
    mock_store.delete.side_effect = StoreError("unavailable")
    with pytest.raises(StoreError, match="unavailable"):
        await mock_reconciler.reconcile(KEY)


async def test_kyma_deleted_best_effort(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that failing to delete one component does not stop the others."""
    kyma = _kyma("a", "b", uid="uid-1")
    mock_store.get.side_effect = ObjectNotFoundError("gone")
    mock_store.list.return_value = [
        construct_component(kyma, component) for component in kyma.spec.components
    ]
    mock_store.delete.side_effect = [StoreError("unavailable"), None]
    assert await mock_reconciler.reconcile(KEY) == Result()
    assert mock_store.delete.call_count == 2
    mock_store.update_status.assert_not_called()


async def test_create_already_exists_deleted(
    mock_store: AsyncMock, mock_reconciler: KymaReconciler
) -> None:
    """Test that a component deleted right after a failed create is retried."""
    mock_store.get.side_effect = [
        _kyma("a", uid="uid-1"),
        ObjectNotFoundError("gone"),
    ]
    mock_store.create.side_effect = AlreadyExistsError("exists")
    with pytest.raises(TransientError) as exc:
        await mock_reconciler.reconcile(KEY)
    assert exc.value.requeue_after == 5.0


async def test_component_name_taken_by_other_kyma(
    store: InMemoryStore,
    reconciler: KymaReconciler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test two Kymas deriving the same component name."""
    # Both derive the name p-a-b
    await store.create(_kyma("a-b"))
    other_key = NamedResource("Kyma", "ns", "p-a")
    await store.create(
        Kyma(
            metadata=ObjectMeta(name="p-a", namespace="ns"),
            spec=KymaSpec(components=[ComponentSpec(name="b")]),
        )
    )
    assert await reconciler.reconcile(KEY) == Result()

    with caplog.at_level(logging.ERROR):
        assert await reconciler.reconcile(other_key) == Result()
    assert "name is taken by an object owned by Kyma p" in caplog.text

    # The component stays with the Kyma that created it
    component = await store.get(
        NamedResource("HelmComponent", "ns", "p-a-b"), HelmComponent
    )
    assert component.metadata.owner_references[0].name == "p"
    assert await _children(store) == {"p-a-b": ""}
    assert (await store.get(other_key, Kyma)).status.status == ""

    component.status.status = "success"
    await store.update_status(component)
    await reconciler.reconcile(KEY)
    assert (await _get_kyma(store)).status.status == "success"
    await reconciler.reconcile(other_key)
    assert (await store.get(other_key, Kyma)).status.status != "success"


def test_construct_component_invalid_name() -> None:
    """Test that components must derive a valid object name."""
    kyma = _kyma(uid="uid-1")
    with pytest.raises(ConstructionError, match="Invalid name 'p-Bad/Name_'"):
        construct_component(kyma, ComponentSpec(name="Bad/Name_"))
    with pytest.raises(ConstructionError, match="Invalid name"):
        construct_component(kyma, ComponentSpec(name="a" * 252))
    assert construct_component(kyma, ComponentSpec(name="a" * 251)).name == (
        "p-" + "a" * 251
    )


async def test_invalid_component_name(
    store: InMemoryStore, reconciler: KymaReconciler
) -> None:
    """Test that a Kyma with an invalid component name is not retried."""
    await store.create(_kyma("a", "Not_Valid"))
    assert await reconciler.reconcile(KEY) == Result()
    # Components before the invalid one are created
    assert await _children(store) == {"p-a": ""}
