"""Manager for kyma-inventory.

This module provides the manager that wires the store, the owner index and
the controllers together and runs them until the Kymas converge.
"""

import asyncio
import logging

from kyma_inventory.component_controller import HelmComponentController
from kyma_inventory.config import ManagerConfig
from kyma_inventory.controller import Controller
from kyma_inventory.index import OwnerIndex
from kyma_inventory.kyma_controller import KymaController
from kyma_inventory.manifest import HelmComponent, Kyma, KymaState
from kyma_inventory.store import Store
from kyma_inventory.task import get_task_service

__all__ = ["Manager"]

_LOGGER = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class Manager:
    """Manager coordinating the controllers.

    The manager is responsible for:
    - Registering the owner index with the store
    - Managing the lifecycle of the controllers
    - Waiting until all Kymas report success
    """

    def __init__(self, store: Store, config: ManagerConfig | None = None) -> None:
        """Initialize the manager."""
        self.store = store
        self.config = config or ManagerConfig()
        self.index = OwnerIndex(self.config.index)
        self.store.add_indexer(HelmComponent, self.index.field, self.index)
        self.controllers: dict[str, Controller] = {}

    async def start(self) -> None:
        """Start all controllers."""
        if self.controllers:
            return

        _LOGGER.info("Starting manager")
        self.controllers = {
            "kyma": KymaController(
                self.store, self.index, self.config.kyma_controller
            ),
            "helmcomponent": HelmComponentController(
                self.store, self.config.component_controller
            ),
        }
        for controller in self.controllers.values():
            await controller.start()
        _LOGGER.debug("Started controllers: %s", ", ".join(self.controllers.keys()))

    async def stop(self) -> None:
        """Stop all controllers."""
        if not self.controllers:
            return

        _LOGGER.info("Stopping manager")
        for name, controller in reversed(self.controllers.items()):
            _LOGGER.debug("Stopping controller: %s", name)
            await controller.close()

        # Anything the controllers left behind
        await get_task_service().cancel_background_tasks()
        self.controllers.clear()
        _LOGGER.info("Manager stopped")

    async def is_converged(self) -> bool:
        """Return True if every Kyma and all of its components report success."""
        kymas = await self.store.list(Kyma)
        for kyma in kymas:
            if kyma.status.status != KymaState.SUCCESS:
                return False
            components = await self.store.list(
                HelmComponent,
                namespace=kyma.namespace,
                matching_fields={self.index.field: kyma.name},
            )
            if sorted(c.spec.component_name for c in components) != sorted(
                kyma.component_names
            ):
                return False
        return True

    async def wait_for_convergence(self, timeout: float | None = None) -> bool:
        """Wait until all Kymas converge.

        Returns:
            bool: True if all Kymas converged, False if the timeout expired.
        """
        try:
            async with asyncio.timeout(timeout):
                while not await self.is_converged():
                    await asyncio.sleep(POLL_INTERVAL)
        except TimeoutError:
            _LOGGER.error("Timeout after %ss waiting for Kymas to converge", timeout)
            return False
        return True

    async def run(self, timeout: float | None = None) -> bool:
        """Run the controllers until all Kymas converge.

        Returns:
            bool: True if all work completed successfully, False otherwise.
        """
        await self.start()
        try:
            if await self.wait_for_convergence(timeout):
                _LOGGER.info("All Kymas reconciled successfully")
                return True
            return False
        except asyncio.CancelledError:
            _LOGGER.info("Manager was cancelled")
            return False
        finally:
            await self.stop()
