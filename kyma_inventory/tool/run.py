"""kyma-inventory run action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from kyma_inventory.config import (
    ComponentControllerConfig,
    KymaControllerConfig,
    ManagerConfig,
)
from kyma_inventory.exceptions import InputException, InventoryException
from kyma_inventory.manager import Manager
from kyma_inventory.manifest import HelmComponent, Kyma, read_manifests
from kyma_inventory.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


class RunAction:
    """kyma-inventory run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Reconcile Kyma resources from a local directory",
                description="""Loads Kyma and HelmComponent resources into an
                    in memory store and runs the controllers until every Kyma
                    reports success. The final objects are printed as YAML.""",
            ),
        )
        args.add_argument(
            "path", type=pathlib.Path, help="Path to a manifest file or directory"
        )
        args.add_argument(
            "--timeout",
            type=float,
            default=DEFAULT_TIMEOUT,
            help="Seconds to wait for all Kymas to reach success",
        )
        args.add_argument(
            "--speed",
            type=float,
            default=1.0,
            help="Speed up the component lifecycle by this factor",
        )
        args.add_argument(
            "--max-concurrent-reconciles",
            type=int,
            default=10,
            help="Number of workers of each controller",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        timeout: float,
        speed: float,
        max_concurrent_reconciles: int,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if speed <= 0:
            raise InputException(f"Speed must be positive, got {speed}")
        resources = await read_manifests(path)
        if not resources:
            raise InputException(f"No Kyma or HelmComponent resources found in {path}")

        store = InMemoryStore()
        config = ManagerConfig(
            kyma_controller=KymaControllerConfig(
                max_concurrent_reconciles=max_concurrent_reconciles
            ),
            component_controller=ComponentControllerConfig(
                max_concurrent_reconciles=max_concurrent_reconciles,
                requeue_scale=1.0 / speed,
            ),
        )
        manager = Manager(store, config)
        # Owners are created before the objects that reference them
        for resource in sorted(resources, key=lambda r: not isinstance(r, Kyma)):
            await store.create(resource)

        converged = await manager.run(timeout)

        for kyma in await store.list(Kyma):
            sys.stdout.write(kyma.yaml())
        for component in await store.list(HelmComponent):
            sys.stdout.write(component.yaml())

        if not converged:
            raise InventoryException(f"Kymas did not converge within {timeout}s")
