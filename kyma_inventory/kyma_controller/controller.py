"""Kyma Controller implementation.

This controller keeps the HelmComponents of each Kyma in sync with the list
of components in its spec and aggregates their status into the Kyma.

Key Concepts:
    - Kyma: The composite resource listing the components to install
    - HelmComponent: One component of a Kyma, named `<kyma>-<component>` and
      owned by the Kyma through a controller owner reference
    - OwnerIndex: Finds the HelmComponents of a Kyma without a full scan

A pass creates missing components before it deletes orphans, so a component
being renamed never disappears before its replacement exists. All writes are
idempotent: creating an existing component and losing a status update race
are both ignored, so an interrupted pass converges when it runs again.
"""

import logging

from kyma_inventory.config import KymaControllerConfig
from kyma_inventory.controller import (
    Controller,
    Reconciler,
    Result,
    for_kind,
    generation_changed,
    owned_by,
)
from kyma_inventory.exceptions import (
    AlreadyExistsError,
    ConflictError,
    ConstructionError,
    ObjectNotFoundError,
    StoreError,
    TransientError,
)
from kyma_inventory.index import OwnerIndex
from kyma_inventory.manifest import (
    ComponentSpec,
    ComponentState,
    HelmComponent,
    HelmComponentSpec,
    Kyma,
    KymaState,
    NamedResource,
    ObjectMeta,
    HELM_COMPONENT_KIND,
    KYMA_KIND,
    component_name_for,
    controller_of,
    is_valid_name,
    set_controller_reference,
)
from kyma_inventory.store import Store

_LOGGER = logging.getLogger(__name__)


def construct_component(kyma: Kyma, component: ComponentSpec) -> HelmComponent:
    """Build the HelmComponent for a component of the Kyma.

    Raises:
        ConstructionError: If the derived name is invalid or the Kyma can't be
            set as the owner.
    """
    name = component_name_for(kyma.name, component.name)
    if not is_valid_name(name):
        raise ConstructionError(
            f"Invalid name {name!r} for component {component.name!r} of {kyma.resource_id}"
        )
    helm_component = HelmComponent(
        metadata=ObjectMeta(
            name=name,
            namespace=kyma.namespace,
        ),
        spec=HelmComponentSpec(component_name=component.name),
    )
    set_controller_reference(kyma, helm_component)
    return helm_component


class KymaReconciler(Reconciler):
    """Reconciler creating, deleting and aggregating the components of a Kyma."""

    def __init__(
        self, store: Store, index: OwnerIndex, config: KymaControllerConfig
    ) -> None:
        self._store = store
        self._index = index
        self._config = config

    async def reconcile(self, resource_id: NamedResource) -> Result:
        components = await self._store.list(
            HelmComponent,
            namespace=resource_id.namespace,
            matching_fields={self._index.field: resource_id.name},
        )

        try:
            kyma = await self._store.get(resource_id, Kyma)
        except ObjectNotFoundError:
            await self._delete_all(resource_id, components)
            return Result()

        by_component = {c.spec.component_name: c for c in components}

        # Create missing components and find the ones still in progress
        waiting_for: list[str] = []
        for component in kyma.spec.components:
            if (existing := by_component.get(component.name)) is not None:
                if existing.status.status != ComponentState.SUCCESS:
                    waiting_for.append(component.name)
                continue

            waiting_for.append(component.name)
            try:
                helm_component = construct_component(kyma, component)
            except ConstructionError as err:
                # Not retried until the Kyma spec changes
                _LOGGER.error(
                    "Unable to construct component %s for %s: %s",
                    component.name,
                    resource_id,
                    err,
                )
                return Result()

            _LOGGER.info(
                "Creating component %s for %s", component.name, resource_id
            )
            try:
                await self._store.create(helm_component)
            except AlreadyExistsError:
                if not await self._owns_existing(kyma, helm_component):
                    return Result()
            except StoreError as err:
                raise TransientError(
                    f"Unable to create component {helm_component.resource_id}: {err}",
                    requeue_after=self._config.create_retry_delay,
                ) from err

        await self._update_status(kyma, waiting_for)
        _LOGGER.debug(
            "Status of %s: %d components, waiting for %s",
            resource_id,
            len(components),
            waiting_for,
        )

        # Delete orphans whose component was removed from the spec
        desired = set(kyma.component_names)
        for helm_component in components:
            if helm_component.spec.component_name in desired:
                continue
            _LOGGER.info(
                "Deleting orphan component %s of %s",
                helm_component.resource_id,
                resource_id,
            )
            try:
                await self._store.delete(helm_component.resource_id)
            except ObjectNotFoundError:
                _LOGGER.debug("Component %s already deleted", helm_component.resource_id)

        return Result()

    async def _owns_existing(self, kyma: Kyma, helm_component: HelmComponent) -> bool:
        """Check the owner of a component that already exists with the same name.

        Two Kymas may derive the same component name, e.g. `p` with component
        `a-b` and `p-a` with component `b`. The component then belongs to the
        Kyma that created it first and the other one is not retried until its
        spec changes.
        """
        try:
            existing = await self._store.get(helm_component.resource_id, HelmComponent)
        except ObjectNotFoundError as err:
            raise TransientError(
                f"Component {helm_component.resource_id} was deleted while creating it",
                requeue_after=self._config.create_retry_delay,
            ) from err
        owner = controller_of(existing)
        if owner is not None and (owner.kind, owner.name, owner.uid) == (
            kyma.kind,
            kyma.name,
            kyma.metadata.uid,
        ):
            _LOGGER.debug("Component %s already exists", helm_component.resource_id)
            return True
        _LOGGER.error(
            "Unable to create component %s for %s: the name is taken by an object "
            "owned by %s",
            helm_component.resource_id,
            kyma.resource_id,
            f"{owner.kind} {owner.name}" if owner else "nobody",
        )
        return False

    async def _update_status(self, kyma: Kyma, waiting_for: list[str]) -> None:
        """Persist the aggregated status of the Kyma when it needs to be written."""
        old_status = kyma.status.status
        new_status = KymaState.RECONCILING if waiting_for else KymaState.SUCCESS
        kyma.status.status = new_status.value
        kyma.status.waiting_for = waiting_for

        # The waiting list may change while reconciling, so it is always written
        if old_status == new_status and new_status != KymaState.RECONCILING:
            return
        try:
            await self._store.update_status(kyma)
        except ConflictError as err:
            # The write that won the race triggers another pass
            _LOGGER.debug("Ignoring status update conflict: %s", err)
            return
        if old_status != new_status:
            _LOGGER.info("Kyma %s is %s", kyma.resource_id, new_status.value)

    async def _delete_all(
        self, resource_id: NamedResource, components: list[HelmComponent]
    ) -> None:
        """Delete all components of a Kyma that no longer exists."""
        if components:
            _LOGGER.info(
                "Kyma %s not found, deleting %d components",
                resource_id,
                len(components),
            )
        for helm_component in components:
            try:
                await self._store.delete(helm_component.resource_id)
            except ObjectNotFoundError:
                pass
            except StoreError as err:
                _LOGGER.warning(
                    "Unable to delete component %s: %s",
                    helm_component.resource_id,
                    err,
                )


class KymaController(Controller):
    """Controller for reconciling Kyma resources.

    A pass is triggered by spec changes of a Kyma and by any change to one of
    its HelmComponents, including their status updates.
    """

    def __init__(
        self, store: Store, index: OwnerIndex, config: KymaControllerConfig
    ) -> None:
        super().__init__(
            "kyma",
            store,
            KymaReconciler(store, index, config),
            [
                for_kind(KYMA_KIND, generation_changed),
                owned_by(
                    HELM_COMPONENT_KIND,
                    index.config.owner_kind,
                    index.config.owner_api_version,
                ),
            ],
            config,
        )
