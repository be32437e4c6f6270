"""HelmComponent Controller implementation.

This controller drives each HelmComponent through a fixed provisioning
lifecycle:

    unset -> pending -> started -> failing -> retrying -> success

Every transition persists the new status and schedules exactly one future
pass. The lifecycle is a time driven simulation: it does not look at any real
provisioning outcome and always reaches success after the same transitions.
Any status value it does not recognize is treated as unset.
"""

from dataclasses import dataclass
import logging

from kyma_inventory.config import ComponentControllerConfig
from kyma_inventory.controller import (
    Controller,
    Reconciler,
    Result,
    for_kind,
    generation_changed,
)
from kyma_inventory.exceptions import ObjectNotFoundError
from kyma_inventory.manifest import (
    ComponentState,
    HelmComponent,
    NamedResource,
    HELM_COMPONENT_KIND,
)
from kyma_inventory.store import Store

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """The next state of a component and the delay before the following pass."""

    status: ComponentState
    requeue_after: float


INITIAL_TRANSITION = Transition(ComponentState.PENDING, 5.0)

LIFECYCLE: dict[str, Transition] = {
    ComponentState.PENDING: Transition(ComponentState.STARTED, 10.0),
    ComponentState.STARTED: Transition(ComponentState.FAILING, 30.0),
    ComponentState.FAILING: Transition(ComponentState.RETRYING, 10.0),
    ComponentState.RETRYING: Transition(ComponentState.SUCCESS, 1.0),
    ComponentState.SUCCESS: Transition(ComponentState.SUCCESS, 0.0),
}


def next_transition(status: str) -> Transition:
    """Return the transition out of the given status."""
    return LIFECYCLE.get(status, INITIAL_TRANSITION)


class HelmComponentReconciler(Reconciler):
    """Reconciler advancing a HelmComponent by one lifecycle step per pass."""

    def __init__(self, store: Store, config: ComponentControllerConfig) -> None:
        self._store = store
        self._config = config

    async def reconcile(self, resource_id: NamedResource) -> Result:
        try:
            component = await self._store.get(resource_id, HelmComponent)
        except ObjectNotFoundError:
            _LOGGER.debug("HelmComponent %s not found, nothing to do", resource_id)
            return Result()

        prev_status = component.status.status
        transition = next_transition(prev_status)
        requeue_after = transition.requeue_after * self._config.requeue_scale
        _LOGGER.debug(
            "Reconcile %s status %r -> %r, requeue %ss",
            resource_id,
            prev_status,
            transition.status.value,
            requeue_after,
        )
        if transition.status != prev_status:
            component.status.status = transition.status.value
            # Failures propagate so the pass is retried with backoff
            await self._store.update_status(component)
            _LOGGER.info(
                "HelmComponent %s is %s", resource_id, transition.status.value
            )

        if requeue_after > 0:
            return Result(requeue_after=requeue_after)
        return Result()


class HelmComponentController(Controller):
    """Controller for reconciling HelmComponent resources."""

    def __init__(self, store: Store, config: ComponentControllerConfig) -> None:
        """Initialize the controller with a store.

        Only spec changes trigger a pass; the status updates written by the
        reconciler are filtered out and the lifecycle is driven by requeues.
        """
        super().__init__(
            "helmcomponent",
            store,
            HelmComponentReconciler(store, config),
            [for_kind(HELM_COMPONENT_KIND, generation_changed)],
            config,
        )
